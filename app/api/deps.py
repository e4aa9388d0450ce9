"""Shared FastAPI dependencies resolving per-process services from app state."""

from __future__ import annotations

import logging
import math

from fastapi import Depends, HTTPException, Request, status

from app.config import Settings, get_settings
from app.generation.store import GenerationStore
from app.services.generation import PlanGenerationService
from app.services.rate_limit import FixedWindowRateLimiter, get_client_ip
from app.services.request_dedup import RequestDeduplicator

logger = logging.getLogger(__name__)


def get_store(request: Request) -> GenerationStore:
  """Return the process-wide generation store."""
  return request.app.state.generation_store


def get_deduplicator(request: Request) -> RequestDeduplicator:
  return request.app.state.deduplicator


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
  return request.app.state.rate_limiter


def get_generation_service(request: Request) -> PlanGenerationService:
  """Return the generation service, or 503 when no provider is configured."""
  service: PlanGenerationService | None = request.app.state.generation_service
  if service is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="AI provider is not configured")
  return service


async def enforce_rate_limit(
  request: Request,
  limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> None:
  """Reject the request with 429 once the client's window is exhausted."""
  identifier = get_client_ip(request)
  result = limiter.check_limit(identifier, max_requests=settings.rate_limit_max_requests, window_ms=settings.rate_limit_window_ms)
  if result.success:
    return

  retry_after = max(1, math.ceil(result.reset_in / 1000))
  logger.info("Rate limit exceeded client=%s path=%s retry_after=%ss", identifier, request.url.path, retry_after)
  raise HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail="Too many requests. Please try again later.",
    headers={"Retry-After": str(retry_after), "X-RateLimit-Remaining": str(result.remaining)},
  )
