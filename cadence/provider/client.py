"""HTTP client for the audio generation provider."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from cadence.config import Settings
from cadence.jobs.errors import MalformedUpstreamResponseError, NotConfiguredError, UpstreamCallFailedError, upstream_error_from_response
from cadence.jobs.models import UpstreamFamily
from cadence.provider.schemas import UpstreamStatus, parse_description, parse_task_created, parse_task_status, parse_uploaded_file

logger = logging.getLogger(__name__)


class GenerationProvider(Protocol):
  """Contract for the remote generation service."""

  async def generate(self, family: UpstreamFamily, body: dict[str, Any]) -> str:
    """Start a generation and return the external task id."""

  async def extend(self, family: UpstreamFamily, *, source_task_id: str, duration_seconds: int) -> str:
    """Start an extension of a finished task and return the new external task id."""

  async def query(self, family: UpstreamFamily, external_task_id: str) -> UpstreamStatus:
    """Fetch the normalized status for one external task."""

  async def upload_file(self, *, filename: str, content: bytes, content_type: str | None, purpose: str = "reference") -> str:
    """Upload reference audio and return the provider file id."""

  async def describe_song(self, file_id: str) -> str | None:
    """Analyse uploaded audio and return a short description."""

  async def aclose(self) -> None:
    """Release pooled connections."""


class HttpGenerationProvider:
  """Bearer-authenticated provider client built on a shared httpx.AsyncClient."""

  def __init__(self, *, base_url: str, api_key: str | None, timeout_seconds: float, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not api_key or not base_url:
      raise NotConfiguredError()
    # Keep one pooled client for the process; polling reuses connections across ticks.
    self._client = httpx.AsyncClient(base_url=base_url, headers={"authorization": f"Bearer {api_key}"}, timeout=timeout_seconds, transport=transport, trust_env=False)

  @classmethod
  def from_settings(cls, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> HttpGenerationProvider:
    return cls(base_url=settings.provider_base_url, api_key=settings.provider_api_key, timeout_seconds=settings.provider_timeout_seconds, transport=transport)

  async def generate(self, family: UpstreamFamily, body: dict[str, Any]) -> str:
    payload = await self._request("POST", f"{family}/generate", json=body)
    return parse_task_created(payload)

  async def extend(self, family: UpstreamFamily, *, source_task_id: str, duration_seconds: int) -> str:
    payload = await self._request("POST", f"{family}/extend", json={"id": source_task_id, "duration": duration_seconds})
    return parse_task_created(payload)

  async def query(self, family: UpstreamFamily, external_task_id: str) -> UpstreamStatus:
    payload = await self._request("GET", f"{family}/query/{external_task_id}")
    return parse_task_status(payload)

  async def upload_file(self, *, filename: str, content: bytes, content_type: str | None, purpose: str = "reference") -> str:
    files = {"file": (filename, content, content_type or "application/octet-stream")}
    payload = await self._request("POST", "files/upload", files=files, data={"purpose": purpose})
    return parse_uploaded_file(payload)

  async def describe_song(self, file_id: str) -> str | None:
    payload = await self._request("POST", "song/describe", json={"file_id": file_id})
    return parse_description(payload)

  async def aclose(self) -> None:
    await self._client.aclose()

  async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
    """Send one request and return the decoded JSON body, raising taxonomy errors on failure."""
    # Transport errors (timeouts, refused connections) propagate for the caller to classify.
    response = await self._client.request(method, path, **kwargs)

    if response.is_error:
      logger.warning("Provider call failed method=%s path=%s status=%s", method, path, response.status_code)
      raise upstream_error_from_response(response.status_code, response.text)

    try:
      payload = response.json()
    except ValueError as exc:
      raise MalformedUpstreamResponseError(raw=response.text) from exc

    # The proxy can wrap a provider error inside a 2xx envelope.
    if isinstance(payload, dict) and "error" in payload and "id" not in payload and "status" not in payload:
      raise UpstreamCallFailedError(status=response.status_code, detail=payload.get("details") or payload.get("error"))
    if isinstance(payload, dict) and "error" in payload and isinstance(payload.get("status"), int):
      raise UpstreamCallFailedError(status=payload["status"], detail=payload.get("details") or payload.get("error"))

    return payload
