"""Postgres-backed repository for generation jobs using SQLAlchemy."""

from __future__ import annotations

from typing import Any

from sqlalchemy import case, delete, func, select, update

from cadence.core.database import get_session_factory
from cadence.jobs.models import GenerationJob, JobStatus, UpstreamFamily, Visibility
from cadence.schema.jobs import GenerationJobRow
from cadence.storage.jobs_repo import JobsRepository
from cadence.utils.ids import utc_now_iso


def progress_update_values(progress: int | None, status_message: str | None) -> dict[str, Any]:
  """Build SET values for a non-terminal progress report.

  Both expressions read the stored row, so progress never decreases and a message that came with
  lower progress than stored is dropped instead of being shown next to the higher percentage.
  """
  values: dict[str, Any] = {}
  if progress is not None:
    values["progress"] = func.greatest(GenerationJobRow.progress, progress)
  if status_message is not None:
    if progress is None:
      values["status_message"] = status_message
    else:
      values["status_message"] = case((GenerationJobRow.progress <= progress, status_message), else_=GenerationJobRow.status_message)
  return values


class PostgresJobsRepository(JobsRepository):
  """Persist generation jobs to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: GenerationJob) -> None:
    async with self._session_factory() as session:
      row = GenerationJobRow(
        job_id=record.job_id,
        owner_id=record.owner_id,
        kind=record.kind,
        title=record.title,
        prompt_or_style=record.prompt_or_style,
        lyrics_or_description=record.lyrics_or_description,
        visibility=record.visibility,
        status=record.status,
        external_task_id=record.external_task_id,
        upstream_family=record.upstream_family,
        progress=record.progress,
        status_message=record.status_message,
        result_audio_url=record.result_audio_url,
        result_metadata=record.result_metadata,
        error_detail=record.error_detail,
        source_reference=record.source_reference,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
      )
      session.add(row)
      await session.commit()

  async def get_job(self, job_id: str) -> GenerationJob | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJobRow, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def set_external_task(self, job_id: str, *, external_task_id: str, upstream_family: UpstreamFamily, progress: int, status_message: str, source_reference: str | None = None) -> GenerationJob | None:
    values = {"external_task_id": external_task_id, "upstream_family": upstream_family, "progress": func.greatest(GenerationJobRow.progress, progress), "status_message": status_message}
    if source_reference is not None:
      values["source_reference"] = source_reference
    return await self._update_processing(job_id, values)

  async def update_progress(self, job_id: str, *, progress: int | None, status_message: str | None) -> GenerationJob | None:
    values = progress_update_values(progress, status_message)
    if not values:
      record = await self.get_job(job_id)
      if record is None or record.is_terminal:
        return None
      return record
    return await self._update_processing(job_id, values)

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
    now = utc_now_iso()
    values = {
      "status": status,
      "progress": 100,
      "status_message": status_message,
      "result_audio_url": result_audio_url,
      "result_metadata": result_metadata,
      "error_detail": error_detail,
      "completed_at": now,
    }
    return await self._update_processing(job_id, values, now=now)

  async def list_jobs_for_owner(self, owner_id: str, *, limit: int, offset: int) -> tuple[list[GenerationJob], int]:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id))
      stmt = select(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id).order_by(GenerationJobRow.created_at.desc()).limit(limit).offset(offset)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], int(total or 0)

  async def list_public_jobs(self, *, limit: int, offset: int) -> list[GenerationJob]:
    async with self._session_factory() as session:
      stmt = (
        select(GenerationJobRow)
        .where(GenerationJobRow.visibility == "public", GenerationJobRow.status == "succeeded")
        .order_by(GenerationJobRow.completed_at.desc())
        .limit(limit)
        .offset(offset)
      )
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def list_processing_jobs(self) -> list[GenerationJob]:
    async with self._session_factory() as session:
      stmt = select(GenerationJobRow).where(GenerationJobRow.status == "processing").order_by(GenerationJobRow.created_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def update_visibility(self, job_id: str, *, owner_id: str, visibility: Visibility) -> GenerationJob | None:
    async with self._session_factory() as session:
      stmt = update(GenerationJobRow).where(GenerationJobRow.job_id == job_id, GenerationJobRow.owner_id == owner_id).values(visibility=visibility, updated_at=utc_now_iso()).returning(GenerationJobRow)
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def delete_job(self, job_id: str, *, owner_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(GenerationJobRow).where(GenerationJobRow.job_id == job_id, GenerationJobRow.owner_id == owner_id))
      await session.commit()
      return bool(result.rowcount)

  async def delete_failed_for_owner(self, owner_id: str) -> int:
    async with self._session_factory() as session:
      result = await session.execute(delete(GenerationJobRow).where(GenerationJobRow.owner_id == owner_id, GenerationJobRow.status == "failed"))
      await session.commit()
      return int(result.rowcount or 0)

  async def _update_processing(self, job_id: str, values: dict[str, Any], *, now: str | None = None) -> GenerationJob | None:
    """Apply values only while the job is processing and return the updated record."""
    async with self._session_factory() as session:
      stmt = (
        update(GenerationJobRow)
        .where(GenerationJobRow.job_id == job_id, GenerationJobRow.status == "processing")
        .values(**values, updated_at=now or utc_now_iso())
        .returning(GenerationJobRow)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: GenerationJobRow) -> GenerationJob:
    return GenerationJob(
      job_id=row.job_id,
      owner_id=row.owner_id,
      kind=row.kind,  # type: ignore[arg-type]
      title=row.title,
      prompt_or_style=row.prompt_or_style,
      lyrics_or_description=row.lyrics_or_description,
      visibility=row.visibility,  # type: ignore[arg-type]
      status=row.status,  # type: ignore[arg-type]
      external_task_id=row.external_task_id,
      upstream_family=row.upstream_family,  # type: ignore[arg-type]
      progress=int(row.progress or 0),
      status_message=row.status_message,
      result_audio_url=row.result_audio_url,
      result_metadata=row.result_metadata,
      error_detail=row.error_detail,
      source_reference=row.source_reference,
      created_at=row.created_at,
      updated_at=row.updated_at,
      completed_at=row.completed_at,
    )
