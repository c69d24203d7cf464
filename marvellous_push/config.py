"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from marvellous_push.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

FCM_MESSAGING_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the notification server."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_project_id: str | None
  firebase_service_account_json: str | None
  firebase_service_account_json_path: str | None
  fcm_api_base_url: str
  push_dispatch_secret: str | None
  push_send_concurrency: int
  push_send_timeout_seconds: float
  push_token_cache_enabled: bool
  push_default_icon: str
  push_default_badge: str
  push_default_link: str
  push_app_base_url: str | None
  realtime_channels: tuple[str, ...]
  realtime_connect_max_attempts: int
  realtime_connect_base_delay_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Database connectivity settings for migrations and offline scripts."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("MARVELLOUS_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("MARVELLOUS_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("MARVELLOUS_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("MARVELLOUS_ENV", "development").lower()
  debug = _parse_bool(os.getenv("MARVELLOUS_DEBUG"))

  log_backup_count = int(os.getenv("MARVELLOUS_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("MARVELLOUS_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # The service account may arrive inline (secret manager) or as a mounted file.
  service_account_json = _optional_str(os.getenv("MARVELLOUS_FIREBASE_SERVICE_ACCOUNT_JSON") or os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON"))
  service_account_path = _optional_str(os.getenv("MARVELLOUS_FIREBASE_SERVICE_ACCOUNT_JSON_PATH") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("MARVELLOUS_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("MARVELLOUS_LOG_DIR") or "logs").strip(),
    log_max_bytes=_positive_int("MARVELLOUS_LOG_MAX_BYTES", "5242880"),
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("MARVELLOUS_LOG_HTTP_4XX")),
    pg_dsn=_optional_str(os.getenv("MARVELLOUS_PG_DSN") or os.getenv("DATABASE_URL")),
    pg_connect_timeout=_positive_int("MARVELLOUS_PG_CONNECT_TIMEOUT", "5"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json=service_account_json,
    firebase_service_account_json_path=service_account_path,
    fcm_api_base_url=(os.getenv("MARVELLOUS_FCM_API_BASE_URL") or "https://fcm.googleapis.com").strip().rstrip("/"),
    push_dispatch_secret=_optional_str(os.getenv("MARVELLOUS_PUSH_DISPATCH_SECRET")),
    push_send_concurrency=_positive_int("MARVELLOUS_PUSH_SEND_CONCURRENCY", "10"),
    push_send_timeout_seconds=_positive_float("MARVELLOUS_PUSH_SEND_TIMEOUT_SECONDS", "10"),
    push_token_cache_enabled=_parse_bool(os.getenv("MARVELLOUS_PUSH_TOKEN_CACHE_ENABLED"), default=True),
    push_default_icon=(os.getenv("MARVELLOUS_PUSH_DEFAULT_ICON") or "/marvellous-logo-black.png").strip(),
    push_default_badge=(os.getenv("MARVELLOUS_PUSH_DEFAULT_BADGE") or "/favicon.ico").strip(),
    push_default_link=(os.getenv("MARVELLOUS_PUSH_DEFAULT_LINK") or "/").strip(),
    push_app_base_url=_optional_str(os.getenv("MARVELLOUS_APP_BASE_URL")),
    realtime_channels=tuple(channel.strip() for channel in (os.getenv("MARVELLOUS_REALTIME_CHANNELS") or "shifts,shift_templates").split(",") if channel.strip()),
    realtime_connect_max_attempts=_positive_int("MARVELLOUS_REALTIME_CONNECT_MAX_ATTEMPTS", "5"),
    realtime_connect_base_delay_seconds=_positive_float("MARVELLOUS_REALTIME_CONNECT_BASE_DELAY_SECONDS", "1"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  debug = _parse_bool(os.getenv("MARVELLOUS_DEBUG"))
  pg_connect_timeout = _positive_int("MARVELLOUS_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = _optional_str(os.getenv("MARVELLOUS_PG_DSN") or os.getenv("DATABASE_URL"))
  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
