"""Cadence: asynchronous orchestration of AI audio generation jobs."""

__version__ = "0.1.0"
