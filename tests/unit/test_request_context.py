"""Request/owner/job ids flowing through middleware, log records and poll loops."""

from __future__ import annotations

import logging

import httpx
import pytest
from cadence.core.logging import LogContextFilter, current_log_context, log_context
from cadence.core.middleware import RequestLoggingMiddleware, resolve_request_id
from conftest import make_job, succeeded


def _recording_app(seen: list[dict[str, str | None]]):
  async def app(scope, receive, send):
    seen.append(current_log_context())
    status = 500 if scope["path"] == "/boom" else 200
    await send({"type": "http.response.start", "status": status, "headers": []})
    await send({"type": "http.response.body", "body": b"ok"})

  return RequestLoggingMiddleware(app)


@pytest.fixture
async def recorded():
  seen: list[dict[str, str | None]] = []
  async with httpx.AsyncClient(transport=httpx.ASGITransport(app=_recording_app(seen)), base_url="http://test") as client:
    yield client, seen


@pytest.mark.anyio
async def test_request_and_owner_ids_are_bound_while_handling(recorded):
  client, seen = recorded

  response = await client.get("/v1/jobs", headers={"x-request-id": "req-abc", "x-owner-id": " user-1 "})

  assert response.headers["x-request-id"] == "req-abc"
  assert seen == [{"request_id": "req-abc", "owner_id": "user-1", "job_id": None}]
  # Bindings end with the request.
  assert current_log_context() == {"request_id": None, "owner_id": None, "job_id": None}


@pytest.mark.anyio
async def test_unsafe_request_id_is_replaced(recorded):
  client, seen = recorded

  response = await client.get("/v1/jobs", headers={"x-request-id": "bad id;drop"})

  generated = response.headers["x-request-id"]
  assert generated != "bad id;drop"
  assert seen[0]["request_id"] == generated
  assert seen[0]["owner_id"] is None


@pytest.mark.anyio
async def test_server_errors_are_logged_as_warnings(recorded, caplog):
  client, _ = recorded

  with caplog.at_level(logging.INFO, logger="cadence.core.middleware"):
    await client.get("/boom")

  responses = [record for record in caplog.records if record.getMessage().startswith("Response")]
  assert responses[0].levelno == logging.WARNING


def test_resolve_request_id_bounds_length():
  assert resolve_request_id("a" * 128) == "a" * 128
  assert resolve_request_id("a" * 129) != "a" * 129
  assert resolve_request_id(None)


def test_filter_stamps_bound_context_and_placeholders():
  record = logging.LogRecord("cadence.test", logging.INFO, __file__, 1, "hello", None, None)

  with log_context(job_id="job-7"):
    LogContextFilter().filter(record)

  assert record.job_id == "job-7"
  assert record.request_id == "-"
  assert record.owner_id == "-"


def test_filter_keeps_explicit_extra():
  record = logging.LogRecord("cadence.test", logging.INFO, __file__, 1, "hello", None, None)
  record.job_id = "job-explicit"

  with log_context(job_id="job-bound"):
    LogContextFilter().filter(record)

  assert record.job_id == "job-explicit"


def test_unknown_context_field_is_rejected():
  with pytest.raises(ValueError, match="Unknown log context"):
    with log_context(task="t1"):
      pass


@pytest.mark.anyio
async def test_poll_loop_binds_job_id(make_services, jobs_repo, provider):
  services = make_services()
  await jobs_repo.create_job(make_job())
  provider.script("t1", succeeded())
  seen: list[str | None] = []
  original_query = provider.query

  async def query(family, external_task_id):
    seen.append(current_log_context()["job_id"])
    return await original_query(family, external_task_id)

  provider.query = query

  await services.scheduler.schedule("job-1", "t1", "song")
  await services.scheduler.wait_for_idle()

  assert seen == ["job-1"]
  # The loop runs in its own task, so the caller's context is untouched.
  assert current_log_context()["job_id"] is None
