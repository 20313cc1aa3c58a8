"""Storage interfaces for generation jobs."""

from __future__ import annotations

from typing import Any, Protocol

from cadence.jobs.models import GenerationJob, JobStatus, UpstreamFamily, Visibility


class JobsRepository(Protocol):
  """Repository contract for job persistence.

  Every mutation that applies to a running job is conditional on the stored status being
  ``processing``; the methods return None when the job is gone or already terminal so callers
  can abandon work without a separate read.
  """

  async def create_job(self, record: GenerationJob) -> None:
    """Persist an initial job record."""

  async def get_job(self, job_id: str) -> GenerationJob | None:
    """Fetch a job by identifier."""

  async def set_external_task(self, job_id: str, *, external_task_id: str, upstream_family: UpstreamFamily, progress: int, status_message: str, source_reference: str | None = None) -> GenerationJob | None:
    """Record the provider task id once the submission call succeeded."""

  async def update_progress(self, job_id: str, *, progress: int | None, status_message: str | None) -> GenerationJob | None:
    """Raise progress (never lower it) and replace the message on a processing job."""

  async def finalize_job(
    self,
    job_id: str,
    *,
    status: JobStatus,
    status_message: str,
    result_audio_url: str | None = None,
    result_metadata: dict[str, Any] | None = None,
    error_detail: dict[str, Any] | None = None,
  ) -> GenerationJob | None:
    """Move a processing job to a terminal status; returns None when no transition happened."""

  async def list_jobs_for_owner(self, owner_id: str, *, limit: int, offset: int) -> tuple[list[GenerationJob], int]:
    """Return one page of an owner's jobs, newest first, and the total count."""

  async def list_public_jobs(self, *, limit: int, offset: int) -> list[GenerationJob]:
    """Return succeeded public jobs, most recently completed first."""

  async def list_processing_jobs(self) -> list[GenerationJob]:
    """Return every job still marked processing."""

  async def update_visibility(self, job_id: str, *, owner_id: str, visibility: Visibility) -> GenerationJob | None:
    """Change visibility of a job owned by owner_id."""

  async def delete_job(self, job_id: str, *, owner_id: str) -> bool:
    """Delete a job owned by owner_id; returns False when nothing matched."""

  async def delete_failed_for_owner(self, owner_id: str) -> int:
    """Delete every failed job of an owner and return how many rows were removed."""
