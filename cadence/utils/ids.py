"""Identifier and timestamp utilities."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def generate_job_id() -> str:
  """Return a new generation job identifier."""
  return str(uuid.uuid4())


def utc_now_iso() -> str:
  """Return the current UTC time in the persisted ISO-8601 format."""
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
