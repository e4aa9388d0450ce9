"""Retry logic with exponential backoff for plan generation attempts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.ai.errors import is_retryable

T = TypeVar("T")
logger = logging.getLogger(__name__)

MAX_RETRIES = 2
BASE_DELAY_MS = 1000


def backoff_delay_ms(attempt: int, base_delay_ms: int = BASE_DELAY_MS) -> int:
  """Return the wait before retry `attempt` (1-based): base * 2^(attempt-1)."""
  return base_delay_ms * (2 ** (attempt - 1))


async def retry_with_backoff(operation: Callable[[], Awaitable[T]], *, max_retries: int = MAX_RETRIES, base_delay_ms: int = BASE_DELAY_MS, on_retry: Callable[[int, str], None] | None = None) -> T:
  """
  Invoke `operation` up to `max_retries + 1` times.

  Delays double from `base_delay_ms` with no jitter and no cap. Cancellation and
  non-retryable validation failures propagate immediately; otherwise the last
  error is re-raised once retries are exhausted.
  """
  attempt = 0

  while True:
    try:
      return await operation()
    except Exception as exc:
      if not is_retryable(exc):
        raise

      if attempt >= max_retries:
        logger.error("Operation failed after %d attempts: %s", attempt + 1, exc)
        raise

      attempt += 1
      delay_ms = backoff_delay_ms(attempt, base_delay_ms)
      logger.warning("Retry attempt %d/%d needed. Error: %s. Retrying in %dms...", attempt, max_retries, exc, delay_ms)

      if on_retry is not None:
        on_retry(attempt, str(exc))

      await asyncio.sleep(delay_ms / 1000.0)
