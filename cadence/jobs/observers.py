"""Observer channel for persisted job changes."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from cadence.jobs.models import GenerationJob

logger = logging.getLogger(__name__)


class JobObserver(Protocol):
  """Receives every job state that was written to the store."""

  async def on_job_changed(self, job: GenerationJob) -> None:
    """Handle one persisted job change."""


class JobObservers:
  """Fan out job changes to registered observers; observer failures are logged and dropped."""

  def __init__(self, observers: Iterable[JobObserver] = ()) -> None:
    self._observers: list[JobObserver] = list(observers)

  def add(self, observer: JobObserver) -> None:
    self._observers.append(observer)

  async def publish(self, job: GenerationJob) -> None:
    for observer in self._observers:
      try:
        await observer.on_job_changed(job)
      except Exception as exc:  # noqa: BLE001
        logger.error("Job observer failed job_id=%s observer=%s error=%s", job.job_id, type(observer).__name__, exc, exc_info=True)
