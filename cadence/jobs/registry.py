"""In-memory registry guaranteeing at most one poll loop per external task.

The registry is process local. Running several service instances against one database needs a
distributed lease (for example a row lock on the job) in place of this registry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from cadence.jobs.models import UpstreamFamily


@dataclass
class PollEntry:
  """Bookkeeping for one active poll loop."""

  job_id: str
  external_task_id: str
  family: UpstreamFamily
  attempt_count: int = 0
  last_scheduled_at: float = field(default_factory=time.monotonic)


class PollRegistry:
  def __init__(self) -> None:
    self._entries: dict[str, PollEntry] = {}
    self._lock = asyncio.Lock()

  async def register(self, external_task_id: str, *, job_id: str, family: UpstreamFamily) -> PollEntry | None:
    """Insert an entry if none exists; returns None when a loop is already active."""
    async with self._lock:
      if external_task_id in self._entries:
        return None
      entry = PollEntry(job_id=job_id, external_task_id=external_task_id, family=family)
      self._entries[external_task_id] = entry
      return entry

  def release(self, external_task_id: str, entry: PollEntry | None = None) -> None:
    """Drop an entry; when entry is given, only that exact entry is removed."""
    current = self._entries.get(external_task_id)
    if current is None:
      return
    if entry is not None and current is not entry:
      return
    del self._entries[external_task_id]

  def record_attempt(self, entry: PollEntry) -> int:
    entry.attempt_count += 1
    entry.last_scheduled_at = time.monotonic()
    return entry.attempt_count

  def get(self, external_task_id: str) -> PollEntry | None:
    return self._entries.get(external_task_id)

  def active_task_ids(self) -> list[str]:
    return list(self._entries)

  def clear(self) -> None:
    self._entries.clear()

  def __contains__(self, external_task_id: object) -> bool:
    return external_task_id in self._entries

  def __len__(self) -> int:
    return len(self._entries)
