"""Process-wide logging configuration with request and job context.

Every record carries ``request_id``, ``owner_id`` and ``job_id`` attributes. The middleware binds the
first two for the lifetime of an HTTP request and poll loops bind ``job_id`` for their task, so a single
generation can be followed through submission, polling and finalization by grepping one id.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import time
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from types import TracebackType

from cadence.config import Settings

LOG_CONTEXT_FIELDS = ("request_id", "owner_id", "job_id")
LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [req=%(request_id)s owner=%(owner_id)s job=%(job_id)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
MISSING_CONTEXT = "-"
QUIET_LOGGERS = ("httpx", "httpcore", "asyncpg", "sqlalchemy.engine")

_CONTEXT: dict[str, ContextVar[str | None]] = {name: ContextVar(f"cadence_log_{name}", default=None) for name in LOG_CONTEXT_FIELDS}
_LOG_FILE_PATH: Path | None = None


def bind_log_context(**values: str | None) -> dict[str, Token[str | None]]:
  """Bind context values for the current task; pass the result to ``reset_log_context``."""
  unknown = set(values) - set(_CONTEXT)
  if unknown:
    raise ValueError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
  return {name: _CONTEXT[name].set(value) for name, value in values.items()}


def reset_log_context(tokens: dict[str, Token[str | None]]) -> None:
  for name, token in tokens.items():
    _CONTEXT[name].reset(token)


@contextmanager
def log_context(**values: str | None) -> Iterator[None]:
  tokens = bind_log_context(**values)
  try:
    yield
  finally:
    reset_log_context(tokens)


def current_log_context() -> dict[str, str | None]:
  return {name: var.get() for name, var in _CONTEXT.items()}


class LogContextFilter(logging.Filter):
  """Stamp the bound request/owner/job ids onto each record; explicit ``extra`` values win."""

  def filter(self, record: logging.LogRecord) -> bool:
    for name, var in _CONTEXT.items():
      if getattr(record, name, None) is None:
        setattr(record, name, var.get() or MISSING_CONTEXT)
    return True


class TruncatedFormatter(logging.Formatter):
  """Formatter that keeps the exception header and the innermost frames."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _backup_name(default_name: str) -> str:
  """Name rotated backups cadence_<ts>-1.log so they keep the .log suffix."""
  stem, _, index = default_name.rpartition(".")
  if not index.isdigit() or not stem.endswith(".log"):
    return default_name
  return f"{stem[: -len('.log')]}-{index}.log"


def build_handlers(settings: Settings) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create the stdout and rotating file handlers, both stamping log context."""
  log_dir = Path(settings.log_dir).expanduser().resolve()
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc
  log_path = log_dir / f"cadence_{time.strftime('%Y%m%d_%H%M%S')}.log"

  context_filter = LogContextFilter()
  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.namer = _backup_name
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  for handler in (stream, file_handler):
    handler.addFilter(context_filter)
  return stream, file_handler, log_path


def initialize_logging(settings: Settings) -> Path:
  """Route root and server loggers through the context-aware handlers once per process."""
  global _LOG_FILE_PATH
  if _LOG_FILE_PATH is not None:
    return _LOG_FILE_PATH

  stream_handler, file_handler, log_path = build_handlers(settings)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    server_logger = logging.getLogger(logger_name)
    server_logger.handlers = [stream_handler, file_handler]
    server_logger.propagate = False
  logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, handlers=[stream_handler, file_handler], force=True)
  # Poll loops issue one provider request per interval per job.
  for name in QUIET_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)

  _LOG_FILE_PATH = log_path
  logging.getLogger(__name__).info("Logging initialized. Writing to %s", log_path)
  return log_path
