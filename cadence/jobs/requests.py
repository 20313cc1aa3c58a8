"""Submission payloads, per-kind validation and provider request bodies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from cadence.jobs.errors import InvalidSubmissionError
from cadence.jobs.models import GenerationJob, JobKind, UpstreamFamily, Visibility

UPLOAD_STYLE_LABEL = "Style clone (upload)"
YOUTUBE_STYLE_LABEL = "Style clone (YouTube)"
UPLOAD_FALLBACK_PROMPT = "A new instrumental track with style, mood and instrumentation similar to the reference audio."
YOUTUBE_PROMPT = "A new instrumental track inspired by the style, mood and instrumentation of the reference YouTube audio."
EXTENDED_TITLE_SUFFIX = " (Extended)"

_YOUTUBE_HOSTS = ("youtube.com", "youtu.be")

_KIND_FAMILIES: dict[str, UpstreamFamily] = {
  "song": "song",
  "instrumental": "instrumental",
  "voice_clone": "voice_clone",
  "upload_derived": "instrumental",
  "youtube_derived": "instrumental",
  # Extensions normally inherit the family of their source job.
  "extend": "song",
}


@dataclass(frozen=True)
class UploadedAudio:
  """Raw audio bytes received from the caller."""

  filename: str
  content: bytes
  content_type: str | None = None


@dataclass(frozen=True)
class SubmissionPayload:
  """Caller input for one submission; which fields are required depends on the job kind."""

  title: str | None = None
  prompt_or_style: str | None = None
  lyrics: str | None = None
  description: str | None = None
  visibility: Visibility = "private"
  source_job_id: str | None = None
  duration_seconds: int | None = None
  youtube_url: str | None = None
  audio: UploadedAudio | None = None


def family_for_kind(kind: JobKind | str) -> UpstreamFamily:
  return _KIND_FAMILIES.get(kind, "instrumental")


def _present(value: str | None) -> bool:
  return bool(value and value.strip())


def is_youtube_url(raw: str | None) -> bool:
  """Return True for absolute http(s) URLs on a YouTube host."""
  if not raw:
    return False
  parsed = urlparse(raw.strip())
  if parsed.scheme not in {"http", "https"} or not parsed.hostname:
    return False
  host = parsed.hostname.lower()
  return any(host == candidate or host.endswith(f".{candidate}") for candidate in _YOUTUBE_HOSTS)


def validate_submission(kind: JobKind, payload: SubmissionPayload) -> None:
  """Raise InvalidSubmissionError when the payload misses a field its kind needs."""
  missing: list[str] = []

  if kind == "extend":
    if not _present(payload.source_job_id):
      missing.append("source_job_id")
    if payload.duration_seconds is None or payload.duration_seconds <= 0:
      raise InvalidSubmissionError("duration_seconds must be a positive number")
    if missing:
      raise InvalidSubmissionError(f"missing required fields: {', '.join(missing)}")
    return

  if not _present(payload.title):
    missing.append("title")

  if kind in {"song", "instrumental", "voice_clone"} and not _present(payload.prompt_or_style):
    missing.append("prompt_or_style")

  if kind == "voice_clone" and not _present(payload.lyrics):
    missing.append("lyrics")

  if kind in {"voice_clone", "upload_derived"} and (payload.audio is None or not payload.audio.content):
    missing.append("audio")

  if kind == "youtube_derived" and not _present(payload.youtube_url):
    missing.append("youtube_url")

  if missing:
    raise InvalidSubmissionError(f"missing required fields: {', '.join(missing)}")

  if kind == "youtube_derived" and not is_youtube_url(payload.youtube_url):
    raise InvalidSubmissionError("youtube_url must be an absolute http(s) YouTube URL")


def job_fields_for(kind: JobKind, payload: SubmissionPayload, *, source: GenerationJob | None = None) -> dict[str, Any]:
  """Return the descriptive fields stored on a new job record."""
  if kind == "extend":
    if source is None:
      raise InvalidSubmissionError("source job is required to extend")
    title = payload.title.strip() if _present(payload.title) else f"{source.title}{EXTENDED_TITLE_SUFFIX}"
    return {"title": title, "prompt_or_style": source.prompt_or_style, "lyrics_or_description": source.lyrics_or_description, "visibility": source.visibility, "source_reference": source.job_id}

  if kind == "upload_derived":
    return {"title": payload.title.strip(), "prompt_or_style": UPLOAD_STYLE_LABEL, "lyrics_or_description": payload.description or None, "visibility": payload.visibility}

  if kind == "youtube_derived":
    return {"title": payload.title.strip(), "prompt_or_style": YOUTUBE_STYLE_LABEL, "lyrics_or_description": f"Generated from: {payload.youtube_url.strip()}", "visibility": payload.visibility}

  return {"title": payload.title.strip(), "prompt_or_style": payload.prompt_or_style.strip(), "lyrics_or_description": payload.lyrics or None, "visibility": payload.visibility}


def song_body(payload: SubmissionPayload, *, model: str) -> dict[str, Any]:
  body: dict[str, Any] = {"prompt": payload.prompt_or_style, "model": model, "n": 1}
  if _present(payload.lyrics):
    body["lyrics"] = payload.lyrics
  return body


def instrumental_body(payload: SubmissionPayload, *, model: str) -> dict[str, Any]:
  return {"prompt": payload.prompt_or_style, "model": model, "n": 1}


def voice_clone_body(payload: SubmissionPayload, *, file_id: str, model: str) -> dict[str, Any]:
  return {"file_id": file_id, "lyrics": payload.lyrics, "prompt": payload.prompt_or_style, "model": model, "n": 1}


def upload_derived_body(payload: SubmissionPayload, *, file_id: str, analysis: str | None, model: str) -> dict[str, Any]:
  # Caller description wins over the automatic analysis.
  prompt = payload.description if _present(payload.description) else (analysis or UPLOAD_FALLBACK_PROMPT)
  return {"file_id": file_id, "prompt": prompt, "model": model, "n": 1}


def youtube_body(payload: SubmissionPayload, *, model: str) -> dict[str, Any]:
  return {"audio_url": payload.youtube_url.strip(), "prompt": YOUTUBE_PROMPT, "model": model, "n": 1}
