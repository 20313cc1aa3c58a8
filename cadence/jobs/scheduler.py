"""Background polling of external generation tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from cadence.config import Settings
from cadence.core.logging import bind_log_context
from cadence.jobs.errors import GenerationTimeoutError, UnknownGenerationError, classify_error
from cadence.jobs.finalizer import FinalHandler
from cadence.jobs.models import UpstreamFamily
from cadence.jobs.observers import JobObservers
from cadence.jobs.registry import PollEntry, PollRegistry
from cadence.jobs.requests import family_for_kind
from cadence.jobs.status_mapper import map_upstream_status
from cadence.provider.client import GenerationProvider
from cadence.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

INTERRUPTED_SUBMISSION_REASON = "submission was interrupted before the provider accepted it"

Sleep = Callable[[float], Awaitable[None]]


class PollScheduler:
  """Runs one poll loop per external task until the job reaches a terminal status.

  Each loop waits ``initial_delay_seconds`` before its first query and ``interval_seconds``
  between queries. Transport and parse errors fail the job on the spot. A job that is still
  not terminal after ``max_attempts`` queries fails with a timeout.
  """

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    provider: GenerationProvider,
    registry: PollRegistry,
    final_handler: FinalHandler,
    interval_seconds: float,
    initial_delay_seconds: float,
    max_attempts: int,
    observers: JobObservers | None = None,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    if max_attempts <= 0:
      raise ValueError("max_attempts must be positive.")
    self._jobs_repo = jobs_repo
    self._provider = provider
    self._registry = registry
    self._final_handler = final_handler
    self._interval_seconds = interval_seconds
    self._initial_delay_seconds = initial_delay_seconds
    self._max_attempts = max_attempts
    self._observers = observers or JobObservers()
    self._sleep = sleep
    self._tasks: set[asyncio.Task[None]] = set()

  @classmethod
  def from_settings(cls, settings: Settings, **kwargs) -> PollScheduler:  # type: ignore[no-untyped-def]
    return cls(interval_seconds=settings.poll_interval_seconds, initial_delay_seconds=settings.poll_initial_delay_seconds, max_attempts=settings.poll_max_attempts, **kwargs)

  async def schedule(self, job_id: str, external_task_id: str, family: UpstreamFamily) -> bool:
    """Start polling an external task; returns False when a loop for it is already active."""
    entry = await self._registry.register(external_task_id, job_id=job_id, family=family)
    if entry is None:
      logger.debug("Poll loop already active external_task_id=%s job_id=%s", external_task_id, job_id)
      return False

    task = asyncio.create_task(self._run(entry), name=f"poll:{external_task_id}")
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    task.add_done_callback(self._log_task_error)
    logger.info("Scheduled polling job_id=%s external_task_id=%s family=%s", job_id, external_task_id, family)
    return True

  async def resume_processing(self) -> int:
    """Re-arm polling for processing jobs after a restart and fail jobs that never got a task id."""
    resumed = 0
    for job in await self._jobs_repo.list_processing_jobs():
      if not job.external_task_id:
        await self._final_handler.fail(job.job_id, UnknownGenerationError(INTERRUPTED_SUBMISSION_REASON))
        continue
      family = job.upstream_family or family_for_kind(job.kind)
      if await self.schedule(job.job_id, job.external_task_id, family):
        resumed += 1
    logger.info("Resumed polling for %d processing job(s)", resumed)
    return resumed

  async def wait_for_idle(self) -> None:
    """Wait until every active poll loop has finished."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)

  async def shutdown(self) -> None:
    """Cancel active loops without touching job state; they resume on next start."""
    tasks = list(self._tasks)
    for task in tasks:
      task.cancel()
    if tasks:
      await asyncio.gather(*tasks, return_exceptions=True)
    self._registry.clear()
    logger.info("Poll scheduler stopped (%d loop(s) cancelled)", len(tasks))

  @property
  def active_count(self) -> int:
    return len(self._tasks)

  async def _run(self, entry: PollEntry) -> None:
    # Task local: every line logged by this loop, finalization included, carries the job id.
    bind_log_context(job_id=entry.job_id)
    try:
      await self._sleep(self._initial_delay_seconds)
      while await self._tick(entry):
        await self._sleep(self._interval_seconds)
    except Exception as exc:  # noqa: BLE001
      # A crashed loop must not leave the job processing forever.
      logger.error("Poll loop crashed job_id=%s external_task_id=%s error=%s", entry.job_id, entry.external_task_id, exc, exc_info=True)
      await self._final_handler.fail(entry.job_id, classify_error(exc), external_task_id=entry.external_task_id)
    finally:
      self._registry.release(entry.external_task_id, entry)

  async def _tick(self, entry: PollEntry) -> bool:
    """Run one poll cycle; returns True when the loop should continue."""
    # Abandon silently when the job was deleted or finished elsewhere.
    job = await self._jobs_repo.get_job(entry.job_id)
    if job is None or job.status != "processing":
      logger.debug("Abandoning poll loop job_id=%s external_task_id=%s", entry.job_id, entry.external_task_id)
      return False

    try:
      upstream = await self._provider.query(entry.family, entry.external_task_id)
    except Exception as exc:  # noqa: BLE001
      error = classify_error(exc)
      logger.warning("Status query failed job_id=%s external_task_id=%s code=%s error=%s", entry.job_id, entry.external_task_id, error.code, exc)
      await self._final_handler.fail(entry.job_id, error, external_task_id=entry.external_task_id)
      return False

    update = map_upstream_status(upstream)
    if update.is_terminal:
      await self._final_handler.complete(entry.job_id, entry.external_task_id, upstream, update)
      return False

    record = await self._jobs_repo.update_progress(entry.job_id, progress=update.progress, status_message=update.message)
    if record is None:
      return False
    await self._observers.publish(record)

    attempts = self._registry.record_attempt(entry)
    if attempts >= self._max_attempts:
      logger.warning("Polling exhausted job_id=%s external_task_id=%s attempts=%d", entry.job_id, entry.external_task_id, attempts)
      await self._final_handler.fail(entry.job_id, GenerationTimeoutError(), external_task_id=entry.external_task_id)
      return False
    return True

  @staticmethod
  def _log_task_error(task: asyncio.Task[None]) -> None:
    """Log poll loop crashes so a stuck job is visible in logs."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Poll loop %s crashed: %s", task.get_name(), exc, exc_info=exc)
