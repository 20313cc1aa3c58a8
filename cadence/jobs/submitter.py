"""Submission of generation jobs to the provider."""

from __future__ import annotations

import logging

from cadence.config import Settings
from cadence.credits.ledger import CreditLedger, InsufficientBalanceError
from cadence.jobs.errors import GenerationError, InvalidSubmissionError, NotConfiguredError, UnauthenticatedError, UnknownGenerationError, classify_error
from cadence.jobs.finalizer import FinalHandler
from cadence.jobs.models import GenerationJob, JobKind, UpstreamFamily
from cadence.jobs.observers import JobObservers
from cadence.jobs.requests import SubmissionPayload, family_for_kind, instrumental_body, job_fields_for, song_body, upload_derived_body, validate_submission, voice_clone_body, youtube_body
from cadence.jobs.scheduler import PollScheduler
from cadence.provider.client import GenerationProvider
from cadence.storage.jobs_repo import JobsRepository
from cadence.utils.ids import generate_job_id, utc_now_iso

logger = logging.getLogger(__name__)

_CREDIT_LABELS: dict[str, str] = {
  "song": "Song generation",
  "instrumental": "Instrumental generation",
  "voice_clone": "Voice clone generation",
  "extend": "Song extension",
  "upload_derived": "Creation from upload",
  "youtube_derived": "Creation from YouTube",
}


class JobSubmitter:
  """Creates job records, starts the provider call, charges credits and hands off to polling.

  Configuration, identity, payload and balance problems raise before anything is stored. Once
  the record exists every failure is written to the job instead of being raised.
  """

  def __init__(
    self,
    *,
    jobs_repo: JobsRepository,
    ledger: CreditLedger,
    provider: GenerationProvider | None,
    scheduler: PollScheduler,
    final_handler: FinalHandler,
    credits_per_job: int = 1,
    model: str = "auto",
    observers: JobObservers | None = None,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._ledger = ledger
    self._provider = provider
    self._scheduler = scheduler
    self._final_handler = final_handler
    self._credits_per_job = credits_per_job
    self._model = model
    self._observers = observers or JobObservers()

  @classmethod
  def from_settings(cls, settings: Settings, **kwargs) -> JobSubmitter:  # type: ignore[no-untyped-def]
    return cls(credits_per_job=settings.credits_per_job, model=settings.provider_model, **kwargs)

  async def submit(self, owner_id: str | None, kind: JobKind, payload: SubmissionPayload) -> GenerationJob:
    """Submit one job and return its stored state."""
    # Preconditions run before any record or credit row exists.
    if self._provider is None:
      raise NotConfiguredError()
    if not owner_id or not owner_id.strip():
      raise UnauthenticatedError()
    validate_submission(kind, payload)
    source = await self._load_extend_source(owner_id, payload.source_job_id) if kind == "extend" else None
    balance = await self._ledger.balance(owner_id)
    if balance < self._credits_per_job:
      raise InsufficientBalanceError(user_id=owner_id, balance=balance, required=self._credits_per_job)

    now = utc_now_iso()
    job = GenerationJob(job_id=generate_job_id(), owner_id=owner_id, kind=kind, status="processing", progress=0, status_message="starting", created_at=now, updated_at=now, **job_fields_for(kind, payload, source=source))
    await self._jobs_repo.create_job(job)
    await self._observers.publish(job)
    logger.info("Created job job_id=%s owner_id=%s kind=%s", job.job_id, owner_id, kind)

    family = self._family_for(kind, source)
    try:
      external_task_id, source_reference = await self._start_generation(job, kind, payload, source, family)
    except Exception as exc:  # noqa: BLE001
      error = classify_error(exc)
      logger.warning("Submission failed job_id=%s kind=%s code=%s error=%s", job.job_id, kind, error.code, exc)
      return await self._fail(job, error)

    record = await self._jobs_repo.set_external_task(job.job_id, external_task_id=external_task_id, upstream_family=family, progress=10, status_message="request sent, waiting for the provider", source_reference=source_reference)
    if record is None:
      # Deleted while the provider call was in flight; there is nothing left to charge or poll.
      logger.info("Job disappeared before task id could be stored job_id=%s external_task_id=%s", job.job_id, external_task_id)
      return job

    try:
      await self._ledger.consume(owner_id, self._credits_per_job, f'{_CREDIT_LABELS.get(kind, "Generation")}: "{record.title}"', job.job_id)
    except InsufficientBalanceError as exc:
      logger.warning("Credit consumption rejected job_id=%s: %s", job.job_id, exc)
      return await self._fail(record, UnknownGenerationError("insufficient credit balance"))
    except Exception as exc:  # noqa: BLE001
      logger.error("Credit consumption failed job_id=%s error=%s", job.job_id, exc, exc_info=True)
      return await self._fail(record, classify_error(exc))

    await self._observers.publish(record)
    await self._scheduler.schedule(job.job_id, external_task_id, family)
    return record

  async def _load_extend_source(self, owner_id: str, source_job_id: str | None) -> GenerationJob:
    source = await self._jobs_repo.get_job(source_job_id or "")
    if source is None or source.owner_id != owner_id:
      raise InvalidSubmissionError("source job not found")
    if not source.external_task_id:
      raise InvalidSubmissionError("source job has no provider task to extend")
    return source

  @staticmethod
  def _family_for(kind: JobKind, source: GenerationJob | None) -> UpstreamFamily:
    if kind == "extend" and source is not None:
      return source.upstream_family or family_for_kind(source.kind)
    return family_for_kind(kind)

  async def _start_generation(self, job: GenerationJob, kind: JobKind, payload: SubmissionPayload, source: GenerationJob | None, family: UpstreamFamily) -> tuple[str, str | None]:
    """Run the kind-specific provider calls and return (external task id, source reference)."""
    provider = self._provider
    if provider is None:
      raise NotConfiguredError()

    if kind == "song":
      return await provider.generate("song", song_body(payload, model=self._model)), None

    if kind == "instrumental":
      return await provider.generate("instrumental", instrumental_body(payload, model=self._model)), None

    if kind == "youtube_derived":
      return await provider.generate("instrumental", youtube_body(payload, model=self._model)), None

    if kind == "extend":
      if source is None or not source.external_task_id:
        raise InvalidSubmissionError("source job has no provider task to extend")
      task_id = await provider.extend(family, source_task_id=source.external_task_id, duration_seconds=int(payload.duration_seconds or 0))
      return task_id, source.job_id

    audio = payload.audio
    if audio is None:
      raise InvalidSubmissionError("missing required fields: audio")
    file_id = await provider.upload_file(filename=audio.filename, content=audio.content, content_type=audio.content_type, purpose="reference")

    if kind == "voice_clone":
      await self._record_step(job, progress=5, message="voice sample uploaded")
      return await provider.generate("voice_clone", voice_clone_body(payload, file_id=file_id, model=self._model)), file_id

    await self._record_step(job, progress=5, message="file uploaded, analysing audio")
    analysis = await self._describe(provider, job, file_id)
    return await provider.generate("instrumental", upload_derived_body(payload, file_id=file_id, analysis=analysis, model=self._model)), file_id

  async def _describe(self, provider: GenerationProvider, job: GenerationJob, file_id: str) -> str | None:
    """Analyse uploaded audio; failures only lose the automatic prompt."""
    try:
      analysis = await provider.describe_song(file_id)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Audio analysis failed job_id=%s file_id=%s error=%s", job.job_id, file_id, exc)
      return None
    if analysis:
      await self._record_step(job, progress=20, message="audio analysed, generating instrumental")
    return analysis

  async def _record_step(self, job: GenerationJob, *, progress: int, message: str) -> None:
    record = await self._jobs_repo.update_progress(job.job_id, progress=progress, status_message=message)
    if record is not None:
      await self._observers.publish(record)

  async def _fail(self, job: GenerationJob, error: GenerationError) -> GenerationJob:
    record = await self._final_handler.fail(job.job_id, error, external_task_id=job.external_task_id)
    if record is not None:
      return record
    return await self._jobs_repo.get_job(job.job_id) or job
