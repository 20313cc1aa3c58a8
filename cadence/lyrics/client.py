"""Lyrics assistant backed by the Gemini generateContent REST endpoint."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from cadence.config import Settings
from cadence.jobs.errors import MalformedUpstreamResponseError, NotConfiguredError, upstream_error_from_response

logger = logging.getLogger(__name__)

EMPTY_LYRICS_REASON = "lyrics response was empty or malformed"
SYSTEM_INSTRUCTION = "You are a professional songwriter. Reply with the lyrics only, with no commentary."
LYRICS_RULES = (
  "Do not include a title.",
  "Do not include section markers such as [Verse] or [Chorus].",
  "Do not add an introduction or an explanation.",
  "Return the raw lyrics only.",
)
GENERATION_CONFIG = {"temperature": 0.7, "topP": 0.95}


class LyricsWriter(Protocol):
  async def write(self, idea: str) -> str:
    """Return song lyrics for a short idea."""

  async def aclose(self) -> None: ...


class _RawPart(BaseModel):
  text: str | None = None
  model_config = ConfigDict(extra="ignore")


class _RawContent(BaseModel):
  parts: list[_RawPart] = []
  model_config = ConfigDict(extra="ignore")


class _RawCandidate(BaseModel):
  content: _RawContent | None = None
  finishReason: str | None = None  # noqa: N815
  model_config = ConfigDict(extra="ignore")


class _RawGenerateContent(BaseModel):
  candidates: list[_RawCandidate] = []
  model_config = ConfigDict(extra="ignore")


def build_lyrics_prompt(idea: str) -> str:
  rules = "\n".join(f"- {rule}" for rule in LYRICS_RULES)
  return f'Generate song lyrics based on the idea: "{idea}"\n\nRules:\n{rules}'


def extract_lyrics(payload: Any) -> str:
  """Join the text parts of the first candidate; empty or unexpected bodies are malformed."""
  try:
    parsed = _RawGenerateContent.model_validate(payload)
  except ValidationError as exc:
    raise MalformedUpstreamResponseError(EMPTY_LYRICS_REASON, raw=payload) from exc
  if not parsed.candidates or parsed.candidates[0].content is None:
    raise MalformedUpstreamResponseError(EMPTY_LYRICS_REASON, raw=payload)
  text = "".join(part.text or "" for part in parsed.candidates[0].content.parts).strip()
  if not text:
    raise MalformedUpstreamResponseError(EMPTY_LYRICS_REASON, raw=payload)
  return text


class GeminiLyricsWriter:
  """Calls ``models/{model}:generateContent`` over a pooled httpx client."""

  def __init__(self, *, base_url: str, api_key: str | None, model: str, timeout_seconds: float, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not api_key or not base_url:
      raise NotConfiguredError("lyrics assistant is not configured")
    self._model = model
    self._client = httpx.AsyncClient(base_url=base_url, headers={"x-goog-api-key": api_key}, timeout=timeout_seconds, transport=transport, trust_env=False)

  @classmethod
  def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> GeminiLyricsWriter:
    return cls(base_url=settings.lyrics_base_url, api_key=settings.lyrics_api_key, model=settings.lyrics_model, timeout_seconds=settings.lyrics_timeout_seconds, transport=transport)

  async def write(self, idea: str) -> str:
    body = {
      "contents": [{"role": "user", "parts": [{"text": build_lyrics_prompt(idea)}]}],
      "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
      "generationConfig": GENERATION_CONFIG,
    }
    path = f"models/{self._model}:generateContent"
    # Transport errors propagate for the caller to classify.
    response = await self._client.post(path, json=body)
    if response.is_error:
      logger.warning("Lyrics call failed model=%s status=%s", self._model, response.status_code)
      raise upstream_error_from_response(response.status_code, response.text)
    try:
      payload = response.json()
    except ValueError as exc:
      raise MalformedUpstreamResponseError(EMPTY_LYRICS_REASON, raw=response.text) from exc

    lyrics = extract_lyrics(payload)
    logger.info("Lyrics generated model=%s chars=%d", self._model, len(lyrics))
    return lyrics

  async def aclose(self) -> None:
    await self._client.aclose()
