from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status

from cadence.api.deps import get_job_services, get_owner_id, require_owner_id
from cadence.api.models import DeleteFailedResponse, ExtendJobRequest, InstrumentalJobRequest, JobListResponse, JobView, PublicJobView, SongJobRequest, VisibilityUpdateRequest, YoutubeJobRequest
from cadence.jobs.factory import JobServices
from cadence.jobs.models import JobKind, Visibility
from cadence.jobs.requests import SubmissionPayload, UploadedAudio

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_UPLOAD_BYTES = 25 * 1024 * 1024

AUDIO_FIELD = File(...)
TITLE_FIELD = Form(...)
REQUIRED_TEXT_FIELD = Form(...)
OPTIONAL_TEXT_FIELD = Form(None)
VISIBILITY_FIELD = Form("private")


async def _read_upload(upload: UploadFile) -> UploadedAudio:
  """Read an uploaded audio file into memory, enforcing the size limit."""
  content = await upload.read(MAX_UPLOAD_BYTES + 1)
  if len(content) > MAX_UPLOAD_BYTES:
    raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="Audio file is too large")
  return UploadedAudio(filename=upload.filename or "audio", content=content, content_type=upload.content_type)


async def _submit(services: JobServices, owner_id: str | None, kind: JobKind, payload: SubmissionPayload) -> JobView:
  job = await services.submitter.submit(owner_id, kind, payload)
  return JobView.from_job(job)


@router.post("/song", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_song(request: SongJobRequest, owner_id: str | None = Depends(get_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Submit a song generation job."""
  payload = SubmissionPayload(title=request.title, prompt_or_style=request.prompt_or_style, lyrics=request.lyrics, visibility=request.visibility)
  return await _submit(services, owner_id, "song", payload)


@router.post("/instrumental", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_instrumental(request: InstrumentalJobRequest, owner_id: str | None = Depends(get_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Submit an instrumental generation job."""
  payload = SubmissionPayload(title=request.title, prompt_or_style=request.prompt_or_style, visibility=request.visibility)
  return await _submit(services, owner_id, "instrumental", payload)


@router.post("/voice-clone", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_voice_clone(
  file: UploadFile = AUDIO_FIELD,
  title: str = TITLE_FIELD,
  prompt_or_style: str = REQUIRED_TEXT_FIELD,
  lyrics: str = REQUIRED_TEXT_FIELD,
  visibility: Visibility = VISIBILITY_FIELD,
  owner_id: str | None = Depends(get_owner_id),  # noqa: B008
  services: JobServices = Depends(get_job_services),  # noqa: B008
) -> JobView:
  """Submit a voice clone job from an uploaded voice sample."""
  audio = await _read_upload(file)
  payload = SubmissionPayload(title=title, prompt_or_style=prompt_or_style, lyrics=lyrics, visibility=visibility, audio=audio)
  return await _submit(services, owner_id, "voice_clone", payload)


@router.post("/extend", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_extend(request: ExtendJobRequest, owner_id: str | None = Depends(get_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Extend one of the caller's earlier tracks."""
  payload = SubmissionPayload(title=request.title, source_job_id=request.source_job_id, duration_seconds=request.duration_seconds)
  return await _submit(services, owner_id, "extend", payload)


@router.post("/upload", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_upload(
  file: UploadFile = AUDIO_FIELD,
  title: str = TITLE_FIELD,
  description: str | None = OPTIONAL_TEXT_FIELD,
  visibility: Visibility = VISIBILITY_FIELD,
  owner_id: str | None = Depends(get_owner_id),  # noqa: B008
  services: JobServices = Depends(get_job_services),  # noqa: B008
) -> JobView:
  """Submit an instrumental derived from uploaded reference audio."""
  audio = await _read_upload(file)
  payload = SubmissionPayload(title=title, description=description, visibility=visibility, audio=audio)
  return await _submit(services, owner_id, "upload_derived", payload)


@router.post("/youtube", response_model=JobView, status_code=status.HTTP_202_ACCEPTED)
async def submit_youtube(request: YoutubeJobRequest, owner_id: str | None = Depends(get_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Submit an instrumental derived from a YouTube video."""
  payload = SubmissionPayload(title=request.title, youtube_url=request.youtube_url, visibility=request.visibility)
  return await _submit(services, owner_id, "youtube_derived", payload)


@router.get("", response_model=JobListResponse)
async def list_jobs(
  owner_id: str = Depends(require_owner_id),  # noqa: B008
  services: JobServices = Depends(get_job_services),  # noqa: B008
  limit: int = Query(20, ge=1, le=100),  # noqa: B008
  offset: int = Query(0, ge=0),  # noqa: B008
) -> JobListResponse:
  """List the caller's jobs, newest first."""
  jobs, total = await services.jobs_repo.list_jobs_for_owner(owner_id, limit=limit, offset=offset)
  return JobListResponse(items=[JobView.from_job(job) for job in jobs], total=total, limit=limit, offset=offset)


@router.get("/public", response_model=list[PublicJobView])
async def list_public_jobs(
  services: JobServices = Depends(get_job_services),  # noqa: B008
  limit: int = Query(20, ge=1, le=100),  # noqa: B008
  offset: int = Query(0, ge=0),  # noqa: B008
) -> list[PublicJobView]:
  """Return the public feed of finished tracks."""
  jobs = await services.jobs_repo.list_public_jobs(limit=limit, offset=offset)
  return [PublicJobView.from_job(job) for job in jobs]


@router.delete("/failed", response_model=DeleteFailedResponse)
async def delete_failed_jobs(owner_id: str = Depends(require_owner_id), services: JobServices = Depends(get_job_services)) -> DeleteFailedResponse:  # noqa: B008
  """Remove every failed job of the caller."""
  deleted = await services.jobs_repo.delete_failed_for_owner(owner_id)
  logger.info("Deleted failed jobs owner_id=%s count=%d", owner_id, deleted)
  return DeleteFailedResponse(deleted=deleted)


@router.get("/{job_id}", response_model=JobView)
async def get_job(job_id: str, owner_id: str = Depends(require_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Return one of the caller's jobs."""
  job = await services.jobs_repo.get_job(job_id)
  # Report foreign jobs as missing so ids cannot be enumerated.
  if job is None or job.owner_id != owner_id:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
  return JobView.from_job(job)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(job_id: str, owner_id: str = Depends(require_owner_id), services: JobServices = Depends(get_job_services)) -> Response:  # noqa: B008
  """Delete one of the caller's jobs; a running poll loop abandons on its next tick."""
  deleted = await services.jobs_repo.delete_job(job_id, owner_id=owner_id)
  if not deleted:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{job_id}/visibility", response_model=JobView)
async def update_visibility(job_id: str, request: VisibilityUpdateRequest, owner_id: str = Depends(require_owner_id), services: JobServices = Depends(get_job_services)) -> JobView:  # noqa: B008
  """Publish or unpublish one of the caller's jobs."""
  job = await services.jobs_repo.update_visibility(job_id, owner_id=owner_id, visibility=request.visibility)
  if job is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
  return JobView.from_job(job)
