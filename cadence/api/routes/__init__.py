from . import credits, jobs, lyrics, notifications

__all__ = ["credits", "jobs", "lyrics", "notifications"]
