"""ASGI middleware binding request and owner ids into the log context."""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from cadence.core.logging import bind_log_context, reset_log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
OWNER_ID_HEADER = "x-owner-id"
QUIET_PATHS = frozenset({"/health"})
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(raw: str | None) -> str:
  """Reuse a caller supplied id when it is safe to echo and log; otherwise mint one."""
  if raw and _SAFE_ID.match(raw):
    return raw
  return str(uuid.uuid4())


def _log_safe_owner(raw: str | None) -> str | None:
  owner = (raw or "").strip()
  if not owner:
    return None
  return owner if _SAFE_ID.match(owner) else "invalid"


class RequestLoggingMiddleware:
  """Tag each request with an id, bind it and the caller's owner id to the log context, and log timings.

  The id is stored on ``scope["state"]`` for the exception handlers and echoed in ``x-request-id``.
  Health checks log at DEBUG so platform liveness checks do not drown job traffic.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    headers = Headers(scope=scope)
    request_id = resolve_request_id(headers.get(REQUEST_ID_HEADER))
    scope.setdefault("state", {})["request_id"] = request_id
    path = scope.get("path", "")
    level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
    status_code = 0

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
      await send(message)

    tokens = bind_log_context(request_id=request_id, owner_id=_log_safe_owner(headers.get(OWNER_ID_HEADER)))
    start = time.perf_counter()
    try:
      logger.log(level, "Incoming request %s %s", scope.get("method", "UNKNOWN"), path)
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.perf_counter() - start) * 1000
      # Server errors are logged even for quiet paths.
      logger.log(logging.WARNING if status_code >= 500 or status_code == 0 else level, "Response status=%s path=%s (took %.2fms)", status_code, path, elapsed_ms)
      reset_log_context(tokens)
