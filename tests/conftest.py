"""Shared fixtures and in-memory collaborators for the Cadence test suite."""

from __future__ import annotations

import asyncio
import os
from dataclasses import replace
from typing import Any

# Settings are read at import time by cadence.main; give it a valid environment first.
os.environ.setdefault("CADENCE_ALLOWED_ORIGINS", "http://localhost:3000")
os.environ.setdefault("CADENCE_ENV", "test")

import pytest  # noqa: E402

from cadence.config import Settings  # noqa: E402
from cadence.credits.ledger import CreditTransaction, InsufficientBalanceError  # noqa: E402
from cadence.jobs.factory import JobServices, build_job_services  # noqa: E402
from cadence.jobs.models import GenerationJob, UpstreamFamily  # noqa: E402
from cadence.jobs.observers import JobObservers  # noqa: E402
from cadence.notifications.contracts import InAppNotificationEntry, StoredNotification  # noqa: E402
from cadence.notifications.service import NotificationService  # noqa: E402
from cadence.provider.schemas import UpstreamChoice, UpstreamStatus  # noqa: E402
from cadence.utils.ids import utc_now_iso  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


def make_settings(**overrides: Any) -> Settings:
  values: dict[str, Any] = {
    "environment": "test",
    "debug": False,
    "allowed_origins": ("http://localhost:3000",),
    "log_dir": "./logs",
    "log_max_bytes": 1024,
    "log_backup_count": 1,
    "log_http_4xx": False,
    "pg_dsn": None,
    "pg_connect_timeout": 5,
    "provider_base_url": "https://provider.test/v1",
    "provider_api_key": "test-key",
    "provider_timeout_seconds": 5.0,
    "provider_model": "auto",
    "poll_interval_seconds": 10.0,
    "poll_initial_delay_seconds": 5.0,
    "poll_max_attempts": 60,
    "credits_per_job": 1,
    "notifications_enabled": True,
    "resume_on_startup": True,
    "lyrics_base_url": "https://lyrics.test/v1beta",
    "lyrics_api_key": "lyrics-key",
    "lyrics_model": "gemini-test",
    "lyrics_timeout_seconds": 5.0,
  }
  values.update(overrides)
  return Settings(**values)


def running(progress: float | None = None) -> UpstreamStatus:
  return UpstreamStatus(status="running", progress=progress)


def succeeded(url: str | None = "https://x/a.mp3", **choice: Any) -> UpstreamStatus:
  choices = (UpstreamChoice(audio_url=url, **choice),) if url is not None or choice else ()
  return UpstreamStatus(status="succeeded", choices=choices)


class InMemoryJobsRepository:
  """Dict-backed job store applying the same conditional rules as the Postgres repository."""

  def __init__(self) -> None:
    self.jobs: dict[str, GenerationJob] = {}
    self.progress_history: dict[str, list[int]] = {}

  def _track(self, job: GenerationJob) -> GenerationJob:
    self.jobs[job.job_id] = job
    self.progress_history.setdefault(job.job_id, []).append(job.progress)
    return replace(job)

  async def create_job(self, record: GenerationJob) -> None:
    self._track(replace(record))

  async def get_job(self, job_id: str) -> GenerationJob | None:
    job = self.jobs.get(job_id)
    return replace(job) if job is not None else None

  async def set_external_task(self, job_id: str, *, external_task_id: str, upstream_family: UpstreamFamily, progress: int, status_message: str, source_reference: str | None = None) -> GenerationJob | None:
    job = self.jobs.get(job_id)
    if job is None or job.status != "processing":
      return None
    updated = replace(job, external_task_id=external_task_id, upstream_family=upstream_family, progress=max(job.progress, progress), status_message=status_message, updated_at=utc_now_iso())
    if source_reference is not None:
      updated = replace(updated, source_reference=source_reference)
    return self._track(updated)

  async def update_progress(self, job_id: str, *, progress: int | None, status_message: str | None) -> GenerationJob | None:
    job = self.jobs.get(job_id)
    if job is None or job.status != "processing":
      return None
    new_progress = job.progress if progress is None else max(job.progress, progress)
    # A message reported with lower progress than stored is stale.
    stale = progress is not None and progress < job.progress
    new_message = job.status_message if status_message is None or stale else status_message
    return self._track(replace(job, progress=new_progress, status_message=new_message, updated_at=utc_now_iso()))

  async def finalize_job(self, job_id: str, *, status, status_message, result_audio_url=None, result_metadata=None, error_detail=None) -> GenerationJob | None:  # type: ignore[no-untyped-def]
    job = self.jobs.get(job_id)
    if job is None or job.status != "processing":
      return None
    now = utc_now_iso()
    updated = replace(job, status=status, progress=100, status_message=status_message, result_audio_url=result_audio_url, result_metadata=result_metadata, error_detail=error_detail, completed_at=now, updated_at=now)
    return self._track(updated)

  async def list_jobs_for_owner(self, owner_id: str, *, limit: int, offset: int) -> tuple[list[GenerationJob], int]:
    owned = sorted((job for job in self.jobs.values() if job.owner_id == owner_id), key=lambda job: job.created_at, reverse=True)
    return [replace(job) for job in owned[offset : offset + limit]], len(owned)

  async def list_public_jobs(self, *, limit: int, offset: int) -> list[GenerationJob]:
    public = [job for job in self.jobs.values() if job.visibility == "public" and job.status == "succeeded"]
    public.sort(key=lambda job: job.completed_at or "", reverse=True)
    return [replace(job) for job in public[offset : offset + limit]]

  async def list_processing_jobs(self) -> list[GenerationJob]:
    return [replace(job) for job in self.jobs.values() if job.status == "processing"]

  async def update_visibility(self, job_id: str, *, owner_id: str, visibility) -> GenerationJob | None:  # type: ignore[no-untyped-def]
    job = self.jobs.get(job_id)
    if job is None or job.owner_id != owner_id:
      return None
    return self._track(replace(job, visibility=visibility))

  async def delete_job(self, job_id: str, *, owner_id: str) -> bool:
    job = self.jobs.get(job_id)
    if job is None or job.owner_id != owner_id:
      return False
    del self.jobs[job_id]
    return True

  async def delete_failed_for_owner(self, owner_id: str) -> int:
    doomed = [job_id for job_id, job in self.jobs.items() if job.owner_id == owner_id and job.status == "failed"]
    for job_id in doomed:
      del self.jobs[job_id]
    return len(doomed)


class InMemoryCreditLedger:
  """Ledger double enforcing the non-negative balance and one consumption per job."""

  def __init__(self, balances: dict[str, int] | None = None) -> None:
    self.balances: dict[str, int] = dict(balances or {})
    self.transactions: list[CreditTransaction] = []
    self.consume_error: Exception | None = None

  async def balance(self, user_id: str) -> int:
    return self.balances.get(user_id, 0)

  async def consume(self, user_id: str, amount: int, reason: str, job_ref: str) -> CreditTransaction:
    if self.consume_error is not None:
      raise self.consume_error
    for transaction in self.transactions:
      if transaction.type == "consumption" and transaction.job_reference == job_ref:
        return transaction
    balance = self.balances.get(user_id, 0)
    if balance < amount:
      raise InsufficientBalanceError(user_id=user_id, balance=balance, required=amount)
    self.balances[user_id] = balance - amount
    transaction = CreditTransaction(user_id=user_id, type="consumption", amount=-amount, description=reason, job_reference=job_ref, timestamp=utc_now_iso())
    self.transactions.append(transaction)
    return transaction

  async def grant(self, user_id: str, amount: int, reason: str) -> CreditTransaction:
    self.balances[user_id] = self.balances.get(user_id, 0) + amount
    transaction = CreditTransaction(user_id=user_id, type="grant", amount=amount, description=reason, job_reference=None, timestamp=utc_now_iso())
    self.transactions.append(transaction)
    return transaction

  async def list_transactions(self, user_id: str, *, limit: int = 50) -> list[CreditTransaction]:
    return [item for item in reversed(self.transactions) if item.user_id == user_id][:limit]

  def consumptions_for(self, job_ref: str) -> list[CreditTransaction]:
    return [item for item in self.transactions if item.type == "consumption" and item.job_reference == job_ref]


class InMemoryNotificationStore:
  def __init__(self) -> None:
    self.entries: list[InAppNotificationEntry] = []
    self.read_ids: set[str] = set()
    self.insert_error: Exception | None = None

  async def insert(self, entry: InAppNotificationEntry) -> None:
    if self.insert_error is not None:
      raise self.insert_error
    self.entries.append(entry)

  async def list_for_user(self, user_id: str, *, unread_only: bool = False, limit: int = 50) -> list[StoredNotification]:
    stored = [
      StoredNotification(id=str(index), user_id=entry.user_id, kind=entry.kind, title=entry.title, body=entry.body, template_id=entry.template_id, data=entry.data, read=str(index) in self.read_ids, created_at="2026-01-01T00:00:00Z")
      for index, entry in enumerate(self.entries)
      if entry.user_id == user_id
    ]
    if unread_only:
      stored = [item for item in stored if not item.read]
    return list(reversed(stored))[:limit]

  async def mark_read(self, notification_id: str, *, user_id: str) -> bool:
    if not notification_id.isdigit() or int(notification_id) >= len(self.entries):
      return False
    if self.entries[int(notification_id)].user_id != user_id:
      return False
    self.read_ids.add(notification_id)
    return True

  def for_job(self, job_id: str) -> list[InAppNotificationEntry]:
    return [entry for entry in self.entries if entry.data.get("job_id") == job_id]


class ScriptedProvider:
  """Provider double replaying scripted status sequences per external task id.

  Each entry of a query script is either an UpstreamStatus or an exception to raise; the last
  entry repeats once the script runs out.
  """

  def __init__(self) -> None:
    self.task_ids: list[str] = []
    self.generate_error: Exception | None = None
    self.upload_error: Exception | None = None
    self.describe_result: str | None = None
    self.describe_error: Exception | None = None
    self.scripts: dict[str, list[Any]] = {}
    self.calls: list[tuple[str, Any, Any]] = []
    self.query_counts: dict[str, int] = {}
    self.closed = False

  def script(self, external_task_id: str, *steps: Any) -> None:
    self.scripts[external_task_id] = list(steps)

  def _next_task_id(self) -> str:
    if self.task_ids:
      return self.task_ids.pop(0)
    return f"task-{len(self.calls)}"

  async def generate(self, family: str, body: dict[str, Any]) -> str:
    self.calls.append(("generate", family, body))
    if self.generate_error is not None:
      raise self.generate_error
    return self._next_task_id()

  async def extend(self, family: str, *, source_task_id: str, duration_seconds: int) -> str:
    self.calls.append(("extend", family, {"id": source_task_id, "duration": duration_seconds}))
    if self.generate_error is not None:
      raise self.generate_error
    return self._next_task_id()

  async def query(self, family: str, external_task_id: str) -> UpstreamStatus:
    self.calls.append(("query", family, external_task_id))
    count = self.query_counts.get(external_task_id, 0)
    self.query_counts[external_task_id] = count + 1
    steps = self.scripts.get(external_task_id) or [running()]
    step = steps[min(count, len(steps) - 1)]
    if isinstance(step, BaseException):
      raise step
    return step

  async def upload_file(self, *, filename: str, content: bytes, content_type: str | None, purpose: str = "reference") -> str:
    self.calls.append(("upload", purpose, filename))
    if self.upload_error is not None:
      raise self.upload_error
    return "file-1"

  async def describe_song(self, file_id: str) -> str | None:
    self.calls.append(("describe", None, file_id))
    if self.describe_error is not None:
      raise self.describe_error
    return self.describe_result

  async def aclose(self) -> None:
    self.closed = True

  def calls_of(self, operation: str) -> list[tuple[str, Any, Any]]:
    return [call for call in self.calls if call[0] == operation]


class RecordingObserver:
  def __init__(self) -> None:
    self.changes: list[GenerationJob] = []

  async def on_job_changed(self, job: GenerationJob) -> None:
    self.changes.append(job)

  def progress_for(self, job_id: str) -> list[int]:
    return [job.progress for job in self.changes if job.job_id == job_id]


class RecordingSleep:
  """Sleep replacement that records requested delays and only yields control."""

  def __init__(self) -> None:
    self.delays: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.delays.append(seconds)
    await asyncio.sleep(0)

  @property
  def total(self) -> float:
    return sum(self.delays)


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def ledger() -> InMemoryCreditLedger:
  return InMemoryCreditLedger({"user-1": 5})


@pytest.fixture
def notification_store() -> InMemoryNotificationStore:
  return InMemoryNotificationStore()


@pytest.fixture
def provider() -> ScriptedProvider:
  return ScriptedProvider()


@pytest.fixture
def observer() -> RecordingObserver:
  return RecordingObserver()


@pytest.fixture
def sleeper() -> RecordingSleep:
  return RecordingSleep()


@pytest.fixture
def make_services(jobs_repo, ledger, notification_store, provider, observer, sleeper):
  """Build the orchestration graph over the in-memory collaborators."""

  def _make(*, with_provider: bool = True, **settings_overrides: Any) -> JobServices:
    if not with_provider:
      settings_overrides.setdefault("provider_api_key", None)
    settings = make_settings(**settings_overrides)
    notifications = NotificationService(in_app_repo=notification_store, enabled=settings.notifications_enabled)
    return build_job_services(settings, jobs_repo=jobs_repo, ledger=ledger, provider=provider if with_provider else None, notifications=notifications, observers=JobObservers([observer]), sleep=sleeper)

  return _make


def make_job(job_id: str = "job-1", *, owner_id: str = "user-1", status: str = "processing", external_task_id: str | None = "t1", **fields: Any) -> GenerationJob:
  now = utc_now_iso()
  values: dict[str, Any] = {"kind": "song", "title": "Night Drive", "prompt_or_style": "synthwave", "upstream_family": "song" if external_task_id else None}
  values.update(fields)
  return GenerationJob(job_id=job_id, owner_id=owner_id, status=status, external_task_id=external_task_id, created_at=now, updated_at=now, **values)  # type: ignore[arg-type]
