"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

DEFAULT_PROVIDER_BASE_URL = "https://api.mureka.ai/v1"
DEFAULT_LYRICS_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_LYRICS_MODEL = "gemini-2.5-flash"
ENV_FILE = Path(__file__).resolve().parents[1] / ".env"


def _read_env_file(path: Path) -> dict[str, str]:
  """Parse KEY=VALUE lines; blank lines, comments and malformed lines are skipped."""
  if not path.is_file():
    return {}
  values: dict[str, str] = {}
  for raw in path.read_text(encoding="utf-8").splitlines():
    key, sep, value = raw.strip().removeprefix("export ").partition("=")
    key = key.strip()
    if not sep or not key or key.startswith("#"):
      continue
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
      value = value[1:-1]
    values[key] = value
  return values


# Real environment variables win over the file.
for _key, _value in _read_env_file(ENV_FILE).items():
  os.environ.setdefault(_key, _value)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Cadence service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  provider_base_url: str
  provider_api_key: str | None
  provider_timeout_seconds: float
  provider_model: str
  poll_interval_seconds: float
  poll_initial_delay_seconds: float
  poll_max_attempts: int
  credits_per_job: int
  notifications_enabled: bool
  resume_on_startup: bool
  lyrics_base_url: str
  lyrics_api_key: str | None
  lyrics_model: str
  lyrics_timeout_seconds: float

  @property
  def provider_configured(self) -> bool:
    """Return True when the generation provider can be called."""
    return bool(self.provider_api_key and self.provider_base_url)

  @property
  def lyrics_configured(self) -> bool:
    return bool(self.lyrics_api_key and self.lyrics_base_url)


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("CADENCE_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("CADENCE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("CADENCE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  if normalized == "":
    return default
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _non_negative_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CADENCE_ENV", "development").lower()
  debug = _parse_bool(os.getenv("CADENCE_DEBUG"))

  log_max_bytes = _positive_int("CADENCE_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("CADENCE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CADENCE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  provider_timeout_seconds = float(os.getenv("CADENCE_PROVIDER_TIMEOUT_SECONDS", "30"))
  if provider_timeout_seconds <= 0:
    raise ValueError("CADENCE_PROVIDER_TIMEOUT_SECONDS must be a positive number.")

  # Polling cadence: a 10s interval with 60 attempts caps a job at ten minutes.
  poll_interval_seconds = _non_negative_float("CADENCE_POLL_INTERVAL_SECONDS", "10")
  poll_initial_delay_seconds = _non_negative_float("CADENCE_POLL_INITIAL_DELAY_SECONDS", "5")
  poll_max_attempts = _positive_int("CADENCE_POLL_MAX_ATTEMPTS", "60")

  credits_per_job = _positive_int("CADENCE_CREDITS_PER_JOB", "1")

  lyrics_timeout_seconds = float(os.getenv("CADENCE_LYRICS_TIMEOUT_SECONDS", "30"))
  if lyrics_timeout_seconds <= 0:
    raise ValueError("CADENCE_LYRICS_TIMEOUT_SECONDS must be a positive number.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("CADENCE_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("CADENCE_LOG_DIR") or "./logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("CADENCE_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("CADENCE_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("CADENCE_PG_CONNECT_TIMEOUT", "5"),
    provider_base_url=(os.getenv("CADENCE_PROVIDER_BASE_URL") or DEFAULT_PROVIDER_BASE_URL).strip().rstrip("/"),
    provider_api_key=_optional_str(os.getenv("CADENCE_PROVIDER_API_KEY")),
    provider_timeout_seconds=provider_timeout_seconds,
    provider_model=(os.getenv("CADENCE_PROVIDER_MODEL") or "auto").strip(),
    poll_interval_seconds=poll_interval_seconds,
    poll_initial_delay_seconds=poll_initial_delay_seconds,
    poll_max_attempts=poll_max_attempts,
    credits_per_job=credits_per_job,
    notifications_enabled=_parse_bool(os.getenv("CADENCE_NOTIFICATIONS_ENABLED"), default=True),
    resume_on_startup=_parse_bool(os.getenv("CADENCE_RESUME_ON_STARTUP"), default=True),
    lyrics_base_url=(os.getenv("CADENCE_LYRICS_BASE_URL") or DEFAULT_LYRICS_BASE_URL).strip().rstrip("/"),
    lyrics_api_key=_optional_str(os.getenv("CADENCE_LYRICS_API_KEY") or os.getenv("GEMINI_API_KEY")),
    lyrics_model=(os.getenv("CADENCE_LYRICS_MODEL") or DEFAULT_LYRICS_MODEL).strip(),
    lyrics_timeout_seconds=lyrics_timeout_seconds,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("CADENCE_DEBUG"))
  pg_connect_timeout = _positive_int("CADENCE_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("CADENCE_PG_DSN") or os.getenv("DATABASE_URL")
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
