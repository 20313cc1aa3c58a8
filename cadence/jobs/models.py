"""Domain models for asynchronous audio generation jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

JobStatus = Literal["processing", "succeeded", "failed"]
JobKind = Literal["song", "instrumental", "voice_clone", "extend", "upload_derived", "youtube_derived"]
UpstreamFamily = Literal["song", "instrumental", "voice_clone"]
Visibility = Literal["public", "private"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed"})


@dataclass
class GenerationJob:
  """Represents one request for generated audio tracked until a terminal status."""

  job_id: str
  owner_id: str
  kind: JobKind
  title: str
  prompt_or_style: str
  status: JobStatus
  created_at: str
  updated_at: str
  lyrics_or_description: str | None = None
  visibility: Visibility = "private"
  external_task_id: str | None = None
  upstream_family: UpstreamFamily | None = None
  progress: int = 0
  status_message: str | None = None
  result_audio_url: str | None = None
  result_metadata: dict[str, Any] | None = None
  error_detail: dict[str, Any] | None = None
  source_reference: str | None = None
  completed_at: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class StatusUpdate:
  """Normalized outcome of one upstream status query."""

  status: JobStatus
  progress: int | None
  message: str | None
  failure_reason: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES
