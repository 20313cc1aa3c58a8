import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from cadence.core.database import dispose_db_engine, get_db_engine
from cadence.core.logging import initialize_logging
from cadence.jobs.factory import build_job_services
from cadence.lyrics.client import GeminiLyricsWriter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, build the job services and resume polling; tear them down on exit."""
  from cadence.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("cadence.core.lifespan")

  initialize_logging(settings)
  logger.info("Starting Cadence environment=%s CADENCE_PG_DSN=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  app.state.lyrics_writer = None
  if settings.lyrics_configured:
    app.state.lyrics_writer = GeminiLyricsWriter.from_settings(settings)
  else:
    logger.warning("Lyrics assistant is not configured; /v1/lyrics answers 503.")

  services = None
  # Without a database only /health is served; job routes answer 503.
  if get_db_engine() is None:
    logger.warning("Database is not configured; job services are disabled.")
  else:
    services = build_job_services(settings)
    app.state.services = services
    if settings.resume_on_startup:
      try:
        await services.scheduler.resume_processing()
      except Exception:  # noqa: BLE001
        logger.error("Failed to resume processing jobs at startup.", exc_info=True)

  try:
    yield
  finally:
    if services is not None:
      await services.aclose()
      app.state.services = None
    if app.state.lyrics_writer is not None:
      await app.state.lyrics_writer.aclose()
      app.state.lyrics_writer = None
    await dispose_db_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  # Guard against malformed DSNs without a scheme.
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
