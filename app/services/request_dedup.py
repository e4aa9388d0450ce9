"""In-flight request deduplication with cooperative cancellation."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from app.ai.errors import RequestCancelledError

T = TypeVar("T")
logger = logging.getLogger(__name__)

REQUEST_TTL_SECONDS = 60.0


def generate_request_key(endpoint: str, params: Mapping[str, Any]) -> str:
  """Return a fingerprint that is stable regardless of parameter key order."""
  serialized = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
  return f"{endpoint}:{serialized}"


def endpoint_of(key: str) -> str:
  """Return the endpoint component of a fingerprint."""
  return key.split(":", 1)[0]


class CancellationToken:
  """Cooperative cancellation signal handed to each deduplicated operation."""

  def __init__(self) -> None:
    self._event = asyncio.Event()

  @property
  def cancelled(self) -> bool:
    return self._event.is_set()

  def cancel(self) -> None:
    self._event.set()

  async def wait(self) -> None:
    """Block until cancellation is requested."""
    await self._event.wait()

  def raise_if_cancelled(self) -> None:
    if self._event.is_set():
      raise asyncio.CancelledError()


@dataclass
class PendingOperation:
  """Registry entry for one in-flight underlying call."""

  key: str
  task: asyncio.Task[Any]
  token: CancellationToken
  timestamp: float


@dataclass(frozen=True)
class RequestStats:
  """Snapshot of registry occupancy."""

  total: int
  by_endpoint: dict[str, int] = field(default_factory=dict)


class RequestDeduplicator:
  """Collapse concurrent identical operations into a single underlying call.

  The registry is owned by one event loop; every mutation happens on that loop,
  so no lock is needed. Entries older than the TTL are invisible to lookups but
  the underlying task still clears its own registration when it settles.
  """

  def __init__(self, *, ttl_seconds: float = REQUEST_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
    self._ttl_seconds = ttl_seconds
    self._clock = clock
    self._pending: dict[str, PendingOperation] = {}

  def _is_expired(self, entry: PendingOperation) -> bool:
    return self._clock() - entry.timestamp > self._ttl_seconds

  def _live_entry(self, key: str) -> PendingOperation | None:
    entry = self._pending.get(key)
    if entry is None:
      return None

    # Evict stale registrations as a side effect of the lookup.
    if self._is_expired(entry):
      logger.debug("Evicting expired pending request key=%s", key)
      del self._pending[key]
      return None

    return entry

  def is_pending(self, key: str) -> bool:
    """Return True when a live operation is registered for `key`."""
    return self._live_entry(key) is not None

  def peek(self, key: str) -> asyncio.Future[Any] | None:
    """Return the shared future for `key` without starting anything."""
    entry = self._live_entry(key)
    return entry.task if entry is not None else None

  async def dedupe(self, key: str, operation: Callable[[CancellationToken], Awaitable[T]]) -> T:
    """Await the in-flight operation for `key`, starting `operation` only if none is live."""
    entry = self._live_entry(key)

    if entry is None:
      token = CancellationToken()
      task: asyncio.Task[T] = asyncio.ensure_future(operation(token))
      entry = PendingOperation(key=key, task=task, token=token, timestamp=self._clock())
      self._pending[key] = entry
      task.add_done_callback(lambda settled, key=key: self._release(key, settled))
      logger.debug("Registered pending request key=%s", key)
    else:
      logger.debug("Joining in-flight request key=%s", key)

    shared = entry.task
    try:
      # Shield so one caller's own cancellation never aborts the shared call.
      return await asyncio.shield(shared)
    except asyncio.CancelledError:
      if shared.cancelled():
        raise RequestCancelledError(key) from None
      raise

  def _release(self, key: str, settled: asyncio.Future[Any]) -> None:
    current = self._pending.get(key)
    # Only drop the registration that still points at this task.
    if current is not None and current.task is settled:
      del self._pending[key]

    # Mark failures as retrieved so unobserved settles do not warn at shutdown.
    if not settled.cancelled():
      settled.exception()

  def _abort(self, entry: PendingOperation) -> None:
    entry.token.cancel()
    entry.task.cancel()

  def cancel(self, key: str) -> bool:
    """Abort the operation registered for `key`; return whether one existed."""
    entry = self._pending.pop(key, None)
    if entry is None:
      return False

    self._abort(entry)
    logger.info("Cancelled pending request key=%s", key)
    return True

  def cancel_all_for_endpoint(self, endpoint: str) -> int:
    """Abort every operation whose fingerprint was derived from `endpoint`."""
    prefix = f"{endpoint}:"
    keys = [key for key in self._pending if key.startswith(prefix)]

    for key in keys:
      self._abort(self._pending.pop(key))

    if keys:
      logger.info("Cancelled %d pending requests for endpoint=%s", len(keys), endpoint)
    return len(keys)

  def cancel_all(self) -> int:
    """Abort every registered operation."""
    entries = list(self._pending.values())
    self._pending.clear()
    for entry in entries:
      self._abort(entry)
    return len(entries)

  def sweep_expired(self) -> int:
    """Drop every registration past its TTL; the underlying calls keep running."""
    expired = [key for key, entry in self._pending.items() if self._is_expired(entry)]

    for key in expired:
      del self._pending[key]

    if expired:
      logger.debug("Swept %d expired pending requests", len(expired))
    return len(expired)

  def stats(self) -> RequestStats:
    """Return counts of registered operations, grouped by endpoint."""
    by_endpoint: dict[str, int] = {}
    for key in self._pending:
      endpoint = endpoint_of(key)
      by_endpoint[endpoint] = by_endpoint.get(endpoint, 0) + 1
    return RequestStats(total=len(self._pending), by_endpoint=by_endpoint)
