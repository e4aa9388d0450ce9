"""Fixed-window rate limiting keyed by client identity."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_MS = 60_000


@dataclass(frozen=True)
class RateLimitResult:
  """Outcome of one limiter check."""

  success: bool
  remaining: int
  reset_in: int  # milliseconds until the window resets


@dataclass
class _WindowCounter:
  count: int
  reset_at: float


class FixedWindowRateLimiter:
  """In-memory fixed-window counters; the first hit opens a window for its identifier."""

  def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
    self._clock = clock
    self._windows: dict[str, _WindowCounter] = {}
    self._lock = threading.Lock()

  def check_limit(self, identifier: str, *, max_requests: int = DEFAULT_MAX_REQUESTS, window_ms: int = DEFAULT_WINDOW_MS) -> RateLimitResult:
    now_ms = self._clock() * 1000

    with self._lock:
      window = self._windows.get(identifier)

      # Open a fresh window on first sight or once the previous one lapsed.
      if window is None or now_ms > window.reset_at:
        self._windows[identifier] = _WindowCounter(count=1, reset_at=now_ms + window_ms)
        return RateLimitResult(success=True, remaining=max_requests - 1, reset_in=window_ms)

      reset_in = int(window.reset_at - now_ms)
      if window.count >= max_requests:
        return RateLimitResult(success=False, remaining=0, reset_in=reset_in)

      window.count += 1
      return RateLimitResult(success=True, remaining=max_requests - window.count, reset_in=reset_in)

  def prune(self) -> int:
    """Drop lapsed windows; returns how many were removed."""
    now_ms = self._clock() * 1000
    with self._lock:
      lapsed = [identifier for identifier, window in self._windows.items() if now_ms > window.reset_at]
      for identifier in lapsed:
        del self._windows[identifier]
    return len(lapsed)


def get_client_ip(request: Request) -> str:
  """Return the first forwarded hop, falling back to a shared anonymous bucket."""
  forwarded = request.headers.get("x-forwarded-for")
  if forwarded:
    return forwarded.split(",")[0].strip()
  return "anonymous"
