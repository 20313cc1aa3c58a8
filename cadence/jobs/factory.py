"""Wiring for the job orchestration services."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from cadence.config import Settings
from cadence.core.database import get_session_factory
from cadence.credits.ledger import CreditLedger, PostgresCreditLedger
from cadence.jobs.errors import NotConfiguredError
from cadence.jobs.finalizer import FinalHandler
from cadence.jobs.observers import JobObservers
from cadence.jobs.registry import PollRegistry
from cadence.jobs.scheduler import PollScheduler, Sleep
from cadence.jobs.submitter import JobSubmitter
from cadence.notifications.factory import build_notification_service
from cadence.notifications.service import NotificationService
from cadence.provider.client import GenerationProvider, HttpGenerationProvider
from cadence.storage.jobs_repo import JobsRepository
from cadence.storage.postgres_jobs_repo import PostgresJobsRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobServices:
  """Everything the HTTP layer and the lifespan need to run jobs."""

  jobs_repo: JobsRepository
  ledger: CreditLedger
  provider: GenerationProvider | None
  notifications: NotificationService
  registry: PollRegistry
  observers: JobObservers
  final_handler: FinalHandler
  scheduler: PollScheduler
  submitter: JobSubmitter

  async def aclose(self) -> None:
    """Stop polling and release provider connections."""
    await self.scheduler.shutdown()
    if self.provider is not None:
      await self.provider.aclose()


def build_job_services(
  settings: Settings,
  *,
  jobs_repo: JobsRepository | None = None,
  ledger: CreditLedger | None = None,
  provider: GenerationProvider | None = None,
  notifications: NotificationService | None = None,
  observers: JobObservers | None = None,
  sleep: Sleep = asyncio.sleep,
) -> JobServices:
  """Construct the orchestration graph, defaulting to Postgres storage and the HTTP provider."""
  if jobs_repo is None:
    jobs_repo = PostgresJobsRepository()
  if ledger is None:
    ledger = PostgresCreditLedger(get_session_factory())
  if notifications is None:
    notifications = build_notification_service(settings)

  # A missing provider key still lets read endpoints work; submissions fail with NotConfigured.
  if provider is None and settings.provider_configured:
    provider = HttpGenerationProvider.from_settings(settings)
  if provider is None:
    logger.warning("Generation provider is not configured; submissions will be rejected.")

  observers = observers or JobObservers()
  registry = PollRegistry()
  final_handler = FinalHandler(jobs_repo=jobs_repo, notifications=notifications, registry=registry, observers=observers)
  # The scheduler needs a provider even when unconfigured; resumed loops then fail as not configured.
  scheduler = PollScheduler.from_settings(settings, jobs_repo=jobs_repo, provider=provider or _UnconfiguredProvider(), registry=registry, final_handler=final_handler, observers=observers, sleep=sleep)
  submitter = JobSubmitter.from_settings(settings, jobs_repo=jobs_repo, ledger=ledger, provider=provider, scheduler=scheduler, final_handler=final_handler, observers=observers)
  return JobServices(jobs_repo=jobs_repo, ledger=ledger, provider=provider, notifications=notifications, registry=registry, observers=observers, final_handler=final_handler, scheduler=scheduler, submitter=submitter)


class _UnconfiguredProvider:
  """Provider stand-in that rejects every call with NotConfiguredError."""

  async def generate(self, family, body):  # type: ignore[no-untyped-def]
    raise NotConfiguredError()

  async def extend(self, family, *, source_task_id, duration_seconds):  # type: ignore[no-untyped-def]
    raise NotConfiguredError()

  async def query(self, family, external_task_id):  # type: ignore[no-untyped-def]
    raise NotConfiguredError()

  async def upload_file(self, *, filename, content, content_type, purpose="reference"):  # type: ignore[no-untyped-def]
    raise NotConfiguredError()

  async def describe_song(self, file_id):  # type: ignore[no-untyped-def]
    raise NotConfiguredError()

  async def aclose(self) -> None:
    return None
