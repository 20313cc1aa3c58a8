"""Terminal transitions for generation jobs."""

from __future__ import annotations

import logging
from typing import Any

from cadence.jobs.errors import GenerationError, MalformedUpstreamResponseError, UpstreamCallFailedError
from cadence.jobs.models import GenerationJob, StatusUpdate
from cadence.jobs.observers import JobObservers
from cadence.jobs.registry import PollRegistry
from cadence.notifications.service import NotificationService
from cadence.provider.schemas import UpstreamStatus
from cadence.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

MISSING_AUDIO_URL_REASON = "succeeded but no audio URL returned"
FAILED_STATUS_MESSAGE = "generation failed"


class FinalHandler:
  """Persists the terminal state of a job, then notifies exactly once.

  The store only applies a terminal write to a job that is still processing, so whichever caller
  wins that write is the only one that sends the notification.
  """

  def __init__(self, *, jobs_repo: JobsRepository, notifications: NotificationService, registry: PollRegistry, observers: JobObservers | None = None) -> None:
    self._jobs_repo = jobs_repo
    self._notifications = notifications
    self._registry = registry
    self._observers = observers or JobObservers()

  async def complete(self, job_id: str, external_task_id: str, upstream: UpstreamStatus, update: StatusUpdate) -> GenerationJob | None:
    """Finish a job from a terminal upstream status."""
    if update.status == "succeeded":
      audio_url = upstream.first_audio_url
      # A success without audio is not a usable result.
      if not audio_url:
        error = MalformedUpstreamResponseError(MISSING_AUDIO_URL_REASON, raw=upstream.model_dump())
        return await self.fail(job_id, error, external_task_id=external_task_id)
      return await self.succeed(job_id, audio_url=audio_url, metadata=_result_metadata(upstream), external_task_id=external_task_id)

    error = UpstreamCallFailedError(reason=update.failure_reason, detail={"status": upstream.status})
    return await self.fail(job_id, error, external_task_id=external_task_id)

  async def succeed(self, job_id: str, *, audio_url: str, metadata: dict[str, Any] | None, external_task_id: str | None = None) -> GenerationJob | None:
    try:
      record = await self._jobs_repo.finalize_job(job_id, status="succeeded", status_message="done", result_audio_url=audio_url, result_metadata=metadata)
      if record is not None:
        logger.info("Job succeeded job_id=%s external_task_id=%s", job_id, external_task_id)
        await self._announce(record)
      return record
    finally:
      self._release(external_task_id)

  async def fail(self, job_id: str, error: GenerationError, *, external_task_id: str | None = None) -> GenerationJob | None:
    try:
      record = await self._jobs_repo.finalize_job(job_id, status="failed", status_message=FAILED_STATUS_MESSAGE, error_detail=error.to_detail())
      if record is not None:
        logger.warning("Job failed job_id=%s external_task_id=%s code=%s reason=%s", job_id, external_task_id, error.code, error.reason)
        await self._announce(record)
      return record
    finally:
      self._release(external_task_id)

  async def _announce(self, record: GenerationJob) -> None:
    await self._observers.publish(record)
    await self._notifications.notify_job_finished(record)

  def _release(self, external_task_id: str | None) -> None:
    if external_task_id:
      entry = self._registry.get(external_task_id)
      self._registry.release(external_task_id, entry)


def _result_metadata(upstream: UpstreamStatus) -> dict[str, Any] | None:
  if not upstream.choices:
    return None
  first = upstream.choices[0]
  metadata = {"duration": first.duration, "flac_url": first.flac_url, "choice_id": first.choice_id}
  return {key: value for key, value in metadata.items() if value is not None} or None
