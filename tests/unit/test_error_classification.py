import json

import httpx
import pytest
from cadence.jobs.errors import (
  GenerationTimeoutError,
  InvalidSubmissionError,
  MalformedUpstreamResponseError,
  NetworkFailureError,
  UnknownGenerationError,
  UpstreamCallFailedError,
  classify_error,
  upstream_error_from_response,
)
from pydantic import BaseModel, ValidationError


class _Strict(BaseModel):
  id: str


def _status_error(status_code: int, body: str) -> httpx.HTTPStatusError:
  request = httpx.Request("GET", "https://provider.test/v1/song/query/t1")
  response = httpx.Response(status_code, text=body, request=request)
  return httpx.HTTPStatusError("boom", request=request, response=response)


def test_classified_errors_pass_through():
  error = InvalidSubmissionError("missing required fields: title")

  assert classify_error(error) is error


def test_timeout_maps_to_timeout():
  error = classify_error(httpx.ReadTimeout("slow"))

  assert isinstance(error, GenerationTimeoutError)
  assert error.code == "timeout"


def test_transport_error_maps_to_network_failure():
  error = classify_error(httpx.ConnectError("refused"))

  assert isinstance(error, NetworkFailureError)
  assert error.to_detail()["code"] == "network_failure"


def test_http_status_error_parses_proxy_body():
  body = json.dumps({"error": "Upstream rejected", "status": 429, "details": "rate limited"})
  error = classify_error(_status_error(502, body))

  assert isinstance(error, UpstreamCallFailedError)
  assert error.status == 429
  assert error.detail == "rate limited"
  assert error.reason == "provider call failed with status 429: rate limited"


def test_validation_error_maps_to_malformed():
  with pytest.raises(ValidationError) as exc_info:
    _Strict.model_validate({})

  error = classify_error(exc_info.value)

  assert isinstance(error, MalformedUpstreamResponseError)


def test_json_decode_error_maps_to_malformed():
  with pytest.raises(json.JSONDecodeError) as exc_info:
    json.loads("not json")

  assert isinstance(classify_error(exc_info.value), MalformedUpstreamResponseError)


def test_anything_else_is_unknown_with_raw_type():
  error = classify_error(KeyError("choices"))

  assert isinstance(error, UnknownGenerationError)
  assert error.to_detail()["raw"].startswith("KeyError")


def test_upstream_error_from_plain_text_body():
  error = upstream_error_from_response(500, "Internal error")

  assert error.status == 500
  assert error.detail == "Internal error"
  assert error.to_detail() == {"code": "upstream_call_failed", "reason": "provider call failed with status 500: Internal error", "status": 500, "detail": "Internal error"}


def test_upstream_error_from_empty_body():
  error = upstream_error_from_response(503, "")

  assert error.reason == "provider call failed with status 503"
  assert "detail" not in error.to_detail()


def test_raw_detail_is_truncated():
  error = MalformedUpstreamResponseError(raw="x" * 2000)

  raw = error.to_detail()["raw"]
  assert len(raw) < 600
  assert raw.endswith("...(truncated)")
