from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr

from cadence.credits.ledger import CreditTransaction
from cadence.jobs.models import GenerationJob, JobKind, JobStatus, Visibility
from cadence.notifications.contracts import NotificationKind, StoredNotification


class SongJobRequest(BaseModel):
  """Request payload for a song with vocals."""

  title: StrictStr = Field(min_length=1, max_length=200, examples=["Midnight Drive"])
  prompt_or_style: StrictStr = Field(min_length=1, max_length=1000, description="Style prompt for the generation.", examples=["synthwave, female vocals, 110 bpm"])
  lyrics: StrictStr | None = Field(default=None, max_length=5000, description="Optional lyrics; omitted lyrics let the provider write them.")
  visibility: Visibility = "private"
  model_config = ConfigDict(extra="forbid")


class InstrumentalJobRequest(BaseModel):
  """Request payload for an instrumental track."""

  title: StrictStr = Field(min_length=1, max_length=200)
  prompt_or_style: StrictStr = Field(min_length=1, max_length=1000)
  visibility: Visibility = "private"
  model_config = ConfigDict(extra="forbid")


class ExtendJobRequest(BaseModel):
  """Request payload to extend a previously generated track."""

  source_job_id: StrictStr = Field(min_length=1)
  duration_seconds: int = Field(gt=0, le=600, description="Seconds of audio to append.")
  title: StrictStr | None = Field(default=None, min_length=1, max_length=200)
  model_config = ConfigDict(extra="forbid")


class YoutubeJobRequest(BaseModel):
  """Request payload for an instrumental derived from a YouTube video."""

  title: StrictStr = Field(min_length=1, max_length=200)
  youtube_url: StrictStr = Field(min_length=1, examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ"])
  visibility: Visibility = "private"
  model_config = ConfigDict(extra="forbid")


class VisibilityUpdateRequest(BaseModel):
  visibility: Visibility
  model_config = ConfigDict(extra="forbid")


class JobView(BaseModel):
  """Job state returned to clients."""

  job_id: str
  kind: JobKind
  title: str
  prompt_or_style: str
  lyrics_or_description: str | None
  visibility: Visibility
  status: JobStatus
  progress: int
  status_message: str | None
  result_audio_url: str | None
  result_metadata: dict[str, Any] | None
  error: dict[str, Any] | None
  source_reference: str | None
  created_at: str
  updated_at: str
  completed_at: str | None

  @classmethod
  def from_job(cls, job: GenerationJob) -> JobView:
    return cls(
      job_id=job.job_id,
      kind=job.kind,
      title=job.title,
      prompt_or_style=job.prompt_or_style,
      lyrics_or_description=job.lyrics_or_description,
      visibility=job.visibility,
      status=job.status,
      progress=job.progress,
      status_message=job.status_message,
      result_audio_url=job.result_audio_url,
      result_metadata=job.result_metadata,
      error=job.error_detail,
      source_reference=job.source_reference,
      created_at=job.created_at,
      updated_at=job.updated_at,
      completed_at=job.completed_at,
    )


class PublicJobView(BaseModel):
  """Feed entry for a public track; owner identity and failure details are not exposed."""

  job_id: str
  title: str
  prompt_or_style: str
  lyrics_or_description: str | None
  result_audio_url: str | None
  result_metadata: dict[str, Any] | None
  completed_at: str | None

  @classmethod
  def from_job(cls, job: GenerationJob) -> PublicJobView:
    return cls(job_id=job.job_id, title=job.title, prompt_or_style=job.prompt_or_style, lyrics_or_description=job.lyrics_or_description, result_audio_url=job.result_audio_url, result_metadata=job.result_metadata, completed_at=job.completed_at)


class JobListResponse(BaseModel):
  items: list[JobView]
  total: int
  limit: int
  offset: int


class DeleteFailedResponse(BaseModel):
  deleted: int


class CreditTransactionView(BaseModel):
  type: Literal["consumption", "grant"]
  amount: int
  description: str
  job_reference: str | None
  timestamp: str

  @classmethod
  def from_transaction(cls, transaction: CreditTransaction) -> CreditTransactionView:
    return cls(type=transaction.type, amount=transaction.amount, description=transaction.description, job_reference=transaction.job_reference, timestamp=transaction.timestamp)


class CreditsResponse(BaseModel):
  balance: int
  transactions: list[CreditTransactionView]


class NotificationView(BaseModel):
  id: str
  kind: NotificationKind
  title: str
  body: str
  template_id: str | None
  data: dict[str, Any]
  read: bool
  created_at: str

  @classmethod
  def from_notification(cls, notification: StoredNotification) -> NotificationView:
    return cls(id=notification.id, kind=notification.kind, title=notification.title, body=notification.body, template_id=notification.template_id, data=notification.data, read=notification.read, created_at=notification.created_at)


class LyricsRequest(BaseModel):
  """Short song idea for the lyrics assistant."""

  prompt: StrictStr = Field(min_length=1, max_length=2000, examples=["a late night drive along the coast"])
  model_config = ConfigDict(extra="forbid")


class LyricsResponse(BaseModel):
  lyrics: str
