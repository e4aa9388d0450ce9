"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the AI Gym generation service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_http_bodies: bool
  log_http_body_bytes: int
  groq_api_key: str | None
  llm_base_url: str
  llm_model: str
  llm_temperature: float
  store_dsn: str
  pg_dsn: str | None
  generation_ttl_seconds: int
  dedup_ttl_seconds: int
  dedup_sweep_seconds: int
  prefetch_limit: int
  cache_ttl_minutes: int
  rate_limit_max_requests: int
  rate_limit_window_ms: int
  retry_max: int
  retry_base_delay_ms: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("AIGYM_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("AIGYM_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("AIGYM_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _non_negative_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("AIGYM_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("AIGYM_DEBUG"))

  log_max_bytes = _positive_int("AIGYM_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = _non_negative_int("AIGYM_LOG_BACKUP_COUNT", "10")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("AIGYM_LOG_HTTP_4XX"))
  # Allow opt-in logging of HTTP request/response bodies with a size cap.
  log_http_bodies = _parse_bool(os.getenv("AIGYM_LOG_HTTP_BODIES"))
  log_http_body_bytes = _positive_int("AIGYM_LOG_HTTP_BODY_BYTES", "2048")

  llm_temperature = float(os.getenv("AIGYM_LLM_TEMPERATURE", "0.7"))
  if not 0.0 <= llm_temperature <= 2.0:
    raise ValueError("AIGYM_LLM_TEMPERATURE must be between 0 and 2.")

  # Lifecycle windows for generation records and in-flight request registrations.
  generation_ttl_seconds = _positive_int("AIGYM_GENERATION_TTL_SECONDS", "1800")
  dedup_ttl_seconds = _positive_int("AIGYM_DEDUP_TTL_SECONDS", "60")
  dedup_sweep_seconds = _positive_int("AIGYM_DEDUP_SWEEP_SECONDS", "30")
  prefetch_limit = _positive_int("AIGYM_PREFETCH_LIMIT", "5")
  cache_ttl_minutes = _positive_int("AIGYM_CACHE_TTL_MINUTES", "60")

  rate_limit_max_requests = _positive_int("AIGYM_RATE_LIMIT_MAX_REQUESTS", "5")
  rate_limit_window_ms = _positive_int("AIGYM_RATE_LIMIT_WINDOW_MS", "60000")

  retry_max = _non_negative_int("AIGYM_RETRY_MAX", "2")
  retry_base_delay_ms = _non_negative_int("AIGYM_RETRY_BASE_DELAY_MS", "1000")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("AIGYM_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    groq_api_key=_optional_str(os.getenv("AIGYM_GROQ_API_KEY")) or _optional_str(os.getenv("GROQ_API_KEY")),
    llm_base_url=(os.getenv("AIGYM_LLM_BASE_URL") or "https://api.groq.com/openai/v1").strip(),
    llm_model=(os.getenv("AIGYM_LLM_MODEL") or "openai/gpt-oss-120b").strip(),
    llm_temperature=llm_temperature,
    store_dsn=(os.getenv("AIGYM_STORE_DSN") or "sqlite:///./aigym_store.db").strip(),
    pg_dsn=_optional_str(os.getenv("AIGYM_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    generation_ttl_seconds=generation_ttl_seconds,
    dedup_ttl_seconds=dedup_ttl_seconds,
    dedup_sweep_seconds=dedup_sweep_seconds,
    prefetch_limit=prefetch_limit,
    cache_ttl_minutes=cache_ttl_minutes,
    rate_limit_max_requests=rate_limit_max_requests,
    rate_limit_window_ms=rate_limit_window_ms,
    retry_max=retry_max,
    retry_base_delay_ms=retry_base_delay_ms,
  )
