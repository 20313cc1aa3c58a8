"""Strict internal shapes for provider responses plus the adapters that normalize raw JSON into them."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cadence.jobs.errors import MalformedUpstreamResponseError


class _RawChoice(BaseModel):
  """One generated result as the provider reports it; older payloads used audio_url."""

  url: str | None = None
  audio_url: str | None = None
  flac_url: str | None = None
  duration: float | None = None
  id: str | None = None
  model_config = ConfigDict(extra="ignore")


class _RawTaskStatus(BaseModel):
  id: str | None = None
  status: str = Field(min_length=1)
  failed_reason: str | None = None
  progress: float | None = None
  file_id: str | None = None
  choices: list[_RawChoice] | None = None
  model_config = ConfigDict(extra="ignore")

  @field_validator("progress", mode="before")
  @classmethod
  def _coerce_progress(cls, value: Any) -> Any:
    # Some payloads send progress as a numeric string.
    if isinstance(value, str):
      stripped = value.strip()
      return float(stripped) if stripped else None
    return value


class _RawTaskCreated(BaseModel):
  id: str = Field(min_length=1)
  model_config = ConfigDict(extra="ignore")


class _RawUploadedFile(BaseModel):
  id: str = Field(min_length=1)
  model_config = ConfigDict(extra="ignore")


class _RawDescription(BaseModel):
  description: str | None = None
  instrument: list[str] | None = None
  genres: list[str] | None = None
  tags: list[str] | None = None
  model_config = ConfigDict(extra="ignore")


class UpstreamChoice(BaseModel):
  """Normalized generation result."""

  audio_url: str | None
  flac_url: str | None = None
  duration: float | None = None
  choice_id: str | None = None
  model_config = ConfigDict(frozen=True)


class UpstreamStatus(BaseModel):
  """Normalized status report for one external task."""

  status: str
  progress: float | None = None
  failed_reason: str | None = None
  choices: tuple[UpstreamChoice, ...] = ()
  model_config = ConfigDict(frozen=True)

  @property
  def first_audio_url(self) -> str | None:
    if not self.choices:
      return None
    return self.choices[0].audio_url


def _validate(model: type[BaseModel], payload: Any) -> Any:
  try:
    return model.model_validate(payload)
  except ValidationError as exc:
    raise MalformedUpstreamResponseError(raw=payload) from exc


def parse_task_status(payload: Any) -> UpstreamStatus:
  """Normalize a raw query response into an UpstreamStatus."""
  raw = _validate(_RawTaskStatus, payload)
  choices = tuple(UpstreamChoice(audio_url=(choice.url or choice.audio_url or None), flac_url=choice.flac_url, duration=choice.duration, choice_id=choice.id) for choice in raw.choices or [])
  failed_reason = (raw.failed_reason or "").strip() or None
  return UpstreamStatus(status=raw.status.strip().lower(), progress=raw.progress, failed_reason=failed_reason, choices=choices)


def parse_task_created(payload: Any) -> str:
  """Return the external task id from a generate or extend response."""
  return _validate(_RawTaskCreated, payload).id


def parse_uploaded_file(payload: Any) -> str:
  """Return the provider file id from an upload response."""
  return _validate(_RawUploadedFile, payload).id


def parse_description(payload: Any) -> str | None:
  """Return a one-line description of analysed audio, or None when nothing useful came back."""
  raw = _validate(_RawDescription, payload)
  if raw.description and raw.description.strip():
    return raw.description.strip()
  # Fall back to the structured tags when no prose description is present.
  parts = [*(raw.genres or []), *(raw.instrument or []), *(raw.tags or [])]
  if parts:
    return ", ".join(part for part in parts if part)
  return None
