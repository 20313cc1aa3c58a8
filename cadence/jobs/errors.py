"""Failure taxonomy for generation jobs and the classifier that maps raw exceptions onto it."""

from __future__ import annotations

import json
from typing import Any

import httpx
from pydantic import ValidationError


class GenerationError(Exception):
  """Base class for every failure that can be recorded on a job."""

  code = "unknown"
  default_reason = "generation failed"

  def __init__(self, reason: str | None = None) -> None:
    self.reason = reason or self.default_reason
    super().__init__(self.reason)

  def to_detail(self) -> dict[str, Any]:
    """Render the persisted error_detail payload."""
    return {"code": self.code, "reason": self.reason}


class UnauthenticatedError(GenerationError):
  """Raised when a submission arrives without an owner identity."""

  code = "unauthenticated"
  default_reason = "sign in required"


class NotConfiguredError(GenerationError):
  """Raised when the provider credentials or base URL are missing."""

  code = "not_configured"
  default_reason = "generation provider is not configured"


class InvalidSubmissionError(GenerationError):
  """Raised when a payload is missing fields required by its job kind."""

  code = "invalid_submission"
  default_reason = "invalid submission"


class UpstreamCallFailedError(GenerationError):
  """The provider answered with a non-success status or reported a failed generation."""

  code = "upstream_call_failed"

  def __init__(self, *, status: int | None = None, detail: Any = None, reason: str | None = None) -> None:
    self.status = status
    self.detail = detail
    if reason is None:
      reason = _describe_upstream_failure(status, detail)
    super().__init__(reason)

  def to_detail(self) -> dict[str, Any]:
    payload = super().to_detail()
    if self.status is not None:
      payload["status"] = self.status
    if self.detail is not None:
      payload["detail"] = self.detail
    return payload


class MalformedUpstreamResponseError(GenerationError):
  """The provider answered 2xx but the body did not match the expected shape."""

  code = "malformed_upstream_response"
  default_reason = "provider returned a malformed response"

  def __init__(self, reason: str | None = None, *, raw: Any = None) -> None:
    self.raw = raw
    super().__init__(reason)

  def to_detail(self) -> dict[str, Any]:
    payload = super().to_detail()
    if self.raw is not None:
      payload["raw"] = _truncate(self.raw)
    return payload


class NetworkFailureError(GenerationError):
  code = "network_failure"
  default_reason = "network failure while contacting the provider"


class GenerationTimeoutError(GenerationError):
  code = "timeout"
  default_reason = "timeout"


class UnknownGenerationError(GenerationError):
  """Catch-all for failures that fit no other category."""

  code = "unknown"
  default_reason = "unknown error"

  def __init__(self, reason: str | None = None, *, raw: Any = None) -> None:
    self.raw = raw
    super().__init__(reason)

  def to_detail(self) -> dict[str, Any]:
    payload = super().to_detail()
    if self.raw is not None:
      payload["raw"] = _truncate(self.raw)
    return payload


_RAW_DETAIL_LIMIT = 500


def _truncate(raw: Any) -> str:
  text = raw if isinstance(raw, str) else repr(raw)
  if len(text) > _RAW_DETAIL_LIMIT:
    return text[:_RAW_DETAIL_LIMIT] + "...(truncated)"
  return text


def _describe_upstream_failure(status: int | None, detail: Any) -> str:
  """Build a user-facing reason from an upstream status and detail payload."""
  if isinstance(detail, dict):
    detail = detail.get("message") or detail.get("error") or detail.get("details")
  if status is None:
    return str(detail) if detail else "provider call failed"
  if detail:
    return f"provider call failed with status {status}: {detail}"
  return f"provider call failed with status {status}"


def upstream_error_from_response(status_code: int, body_text: str) -> UpstreamCallFailedError:
  """Parse a non-2xx provider body, accepting both the proxy shape and raw text."""
  detail: Any = body_text or None
  status = status_code
  try:
    parsed = json.loads(body_text) if body_text else None
  except ValueError:
    parsed = None

  # Proxy errors wrap the provider answer as {error, status, details}.
  if isinstance(parsed, dict):
    if isinstance(parsed.get("status"), int):
      status = parsed["status"]
    detail = parsed.get("details") or parsed.get("error") or parsed

  return UpstreamCallFailedError(status=status, detail=detail)


def classify_error(exc: BaseException) -> GenerationError:
  """Map any raised exception onto the generation failure taxonomy."""
  # Already classified errors pass through untouched.
  if isinstance(exc, GenerationError):
    return exc

  if isinstance(exc, httpx.TimeoutException):
    return GenerationTimeoutError("upstream request timed out")

  if isinstance(exc, httpx.HTTPStatusError):
    return upstream_error_from_response(exc.response.status_code, exc.response.text)

  # Any other transport level failure (DNS, refused connection, reset stream).
  if isinstance(exc, httpx.TransportError):
    return NetworkFailureError()

  if isinstance(exc, ValidationError | json.JSONDecodeError):
    return MalformedUpstreamResponseError(raw=str(exc))

  return UnknownGenerationError(raw=f"{type(exc).__name__}: {exc}")
