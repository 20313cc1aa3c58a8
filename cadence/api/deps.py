"""Shared FastAPI dependencies for identity and service access."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from cadence.jobs.errors import NotConfiguredError
from cadence.jobs.factory import JobServices
from cadence.lyrics.client import LyricsWriter


async def get_job_services(request: Request) -> JobServices:
  """Return the orchestration services built during startup."""
  services = getattr(request.app.state, "services", None)
  if services is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job services are not available")
  return services


async def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str | None:
  """Return the owner identity asserted by the upstream gateway, if any."""
  # The gateway authenticates callers; this service only reads the forwarded identity.
  if x_owner_id is None:
    return None
  owner_id = x_owner_id.strip()
  return owner_id or None


async def require_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
  """Return the owner identity or reject the request as unauthenticated."""
  owner_id = await get_owner_id(x_owner_id)
  if owner_id is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
  return owner_id


async def get_lyrics_writer(request: Request) -> LyricsWriter:
  """Return the lyrics assistant client or report it as not configured."""
  writer = getattr(request.app.state, "lyrics_writer", None)
  if writer is None:
    raise NotConfiguredError("lyrics assistant is not configured")
  return writer
