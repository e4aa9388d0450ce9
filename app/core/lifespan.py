import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.ai.providers.groq import build_model
from app.config import Settings, get_settings
from app.core.database import get_db_engine, get_session_factory
from app.core.logging import _initialize_logging
from app.generation.store import GenerationStore
from app.services.generation import PlanGenerationService
from app.services.rate_limit import FixedWindowRateLimiter
from app.services.request_dedup import RequestDeduplicator
from app.storage.kv import SqlKeyValueStorage

logger = logging.getLogger("app.core.lifespan")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the per-process services and run the registry sweeper."""
  settings = get_settings()
  try:
    _initialize_logging(settings)
  except RuntimeError:
    # File logging is optional; stdout still works through uvicorn's defaults.
    logger.warning("Logging setup failed; continuing with default handlers.", exc_info=True)

  storage = SqlKeyValueStorage.from_dsn(settings.store_dsn)
  deduplicator = RequestDeduplicator(ttl_seconds=settings.dedup_ttl_seconds)
  rate_limiter = FixedWindowRateLimiter()
  generation_store = GenerationStore(storage, ttl_seconds=settings.generation_ttl_seconds, prefetch_limit=settings.prefetch_limit)

  app.state.generation_store = generation_store
  app.state.deduplicator = deduplicator
  app.state.rate_limiter = rate_limiter
  app.state.generation_service = _build_generation_service(settings, deduplicator, generation_store)
  logger.info("Generation store ready dsn=%s api_cache=%s", _redact_dsn(settings.store_dsn), _redact_dsn(settings.pg_dsn))

  sweeper = asyncio.create_task(_sweep_periodically(deduplicator, rate_limiter, settings.dedup_sweep_seconds))
  logger.info("Startup complete.")
  try:
    yield
  finally:
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await sweeper

    cancelled = deduplicator.cancel_all()
    if cancelled:
      logger.info("Cancelled %d in-flight generations at shutdown", cancelled)

    storage.dispose()
    engine = get_db_engine()
    if engine is not None:
      await engine.dispose()


def _build_generation_service(settings: Settings, deduplicator: RequestDeduplicator, store: GenerationStore) -> PlanGenerationService | None:
  model = build_model(settings)
  if model is None:
    return None
  return PlanGenerationService(
    model,
    deduplicator,
    store=store,
    session_factory=get_session_factory(),
    max_retries=settings.retry_max,
    base_delay_ms=settings.retry_base_delay_ms,
    cache_ttl_minutes=settings.cache_ttl_minutes,
  )


async def _sweep_periodically(deduplicator: RequestDeduplicator, rate_limiter: FixedWindowRateLimiter, interval_seconds: float) -> None:
  """Drop stale registry entries and lapsed rate-limit windows."""
  while True:
    await asyncio.sleep(interval_seconds)
    swept = deduplicator.sweep_expired()
    pruned = rate_limiter.prune()
    if swept or pruned:
      logger.debug("Sweeper removed pending=%d rate_windows=%d", swept, pruned)


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  return f"{parsed.scheme}://{netloc}{parsed.path}"
