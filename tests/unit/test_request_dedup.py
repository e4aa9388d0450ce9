from __future__ import annotations

import asyncio

import pytest

from app.ai.errors import RequestCancelledError
from app.services.request_dedup import CancellationToken, RequestDeduplicator, endpoint_of, generate_request_key


class GatedOperation:
  """Operation that blocks until released and counts its invocations."""

  def __init__(self, value: object = "plan") -> None:
    self.calls = 0
    self.tokens: list[CancellationToken] = []
    self.release = asyncio.Event()
    self.value = value

  async def __call__(self, token: CancellationToken) -> object:
    self.calls += 1
    self.tokens.append(token)
    await self.release.wait()
    return self.value


async def _settle() -> None:
  """Let scheduled tasks reach their first suspension point."""
  for _ in range(3):
    await asyncio.sleep(0)


def test_request_key_ignores_param_order() -> None:
  first = generate_request_key("/api/meal/generate", {"dailyCalories": 2000, "dietType": "keto"})
  second = generate_request_key("/api/meal/generate", {"dietType": "keto", "dailyCalories": 2000})

  assert first == second
  assert endpoint_of(first) == "/api/meal/generate"


@pytest.mark.anyio
async def test_concurrent_callers_share_one_invocation() -> None:
  deduplicator = RequestDeduplicator()
  operation = GatedOperation()

  first = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  second = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  await _settle()
  assert deduplicator.is_pending("k")

  operation.release.set()
  results = await asyncio.gather(first, second)

  assert results == ["plan", "plan"]
  assert operation.calls == 1


@pytest.mark.anyio
async def test_settled_key_starts_a_new_invocation() -> None:
  deduplicator = RequestDeduplicator()
  operation = GatedOperation()
  operation.release.set()

  await deduplicator.dedupe("k", operation)
  assert not deduplicator.is_pending("k")

  await deduplicator.dedupe("k", operation)
  assert operation.calls == 2


@pytest.mark.anyio
async def test_failures_reach_every_caller_and_clear_the_entry() -> None:
  deduplicator = RequestDeduplicator()
  gate = asyncio.Event()

  async def failing(token: CancellationToken) -> None:
    await gate.wait()
    raise ValueError("upstream down")

  first = asyncio.ensure_future(deduplicator.dedupe("k", failing))
  second = asyncio.ensure_future(deduplicator.dedupe("k", failing))
  await _settle()
  gate.set()

  results = await asyncio.gather(first, second, return_exceptions=True)

  assert all(isinstance(result, ValueError) for result in results)
  assert not deduplicator.is_pending("k")


@pytest.mark.anyio
async def test_cancel_fails_awaiters_and_frees_the_key() -> None:
  deduplicator = RequestDeduplicator()
  operation = GatedOperation()

  waiter = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  await _settle()

  assert deduplicator.cancel("k") is True
  assert operation.tokens[0].cancelled
  with pytest.raises(RequestCancelledError):
    await waiter

  # A fresh call right after cancellation runs the operation again.
  operation.release.set()
  assert await deduplicator.dedupe("k", operation) == "plan"
  assert operation.calls == 2


def test_cancel_unknown_key_returns_false() -> None:
  assert RequestDeduplicator().cancel("missing") is False


@pytest.mark.anyio
async def test_caller_cancellation_does_not_abort_shared_operation() -> None:
  deduplicator = RequestDeduplicator()
  operation = GatedOperation()

  impatient = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  patient = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  await _settle()

  impatient.cancel()
  with pytest.raises(asyncio.CancelledError):
    await impatient

  operation.release.set()
  assert await patient == "plan"
  assert operation.calls == 1


@pytest.mark.anyio
async def test_cancel_all_for_endpoint_only_touches_that_endpoint() -> None:
  deduplicator = RequestDeduplicator()
  operation = GatedOperation()
  meal_key = generate_request_key("/api/meal/generate", {"dailyCalories": 2000})
  workout_key = generate_request_key("/api/workout/generate", {"daysPerWeek": 3})

  meal = asyncio.ensure_future(deduplicator.dedupe(meal_key, operation))
  workout = asyncio.ensure_future(deduplicator.dedupe(workout_key, operation))
  await _settle()

  assert deduplicator.stats().by_endpoint == {"/api/meal/generate": 1, "/api/workout/generate": 1}
  assert deduplicator.cancel_all_for_endpoint("/api/meal/generate") == 1
  with pytest.raises(RequestCancelledError):
    await meal

  assert deduplicator.is_pending(workout_key)
  operation.release.set()
  assert await workout == "plan"
  assert deduplicator.stats().total == 0


@pytest.mark.anyio
async def test_expired_entries_are_invisible_but_operation_finishes() -> None:
  now = [0.0]
  deduplicator = RequestDeduplicator(ttl_seconds=60, clock=lambda: now[0])
  operation = GatedOperation()

  original = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  await _settle()
  now[0] = 61.0

  assert deduplicator.peek("k") is None
  assert deduplicator.sweep_expired() == 0

  operation.release.set()
  assert await original == "plan"


@pytest.mark.anyio
async def test_sweep_expired_drops_stale_registrations() -> None:
  now = [0.0]
  deduplicator = RequestDeduplicator(ttl_seconds=60, clock=lambda: now[0])
  operation = GatedOperation()

  original = asyncio.ensure_future(deduplicator.dedupe("k", operation))
  await _settle()
  now[0] = 61.0

  assert deduplicator.sweep_expired() == 1
  assert deduplicator.stats().total == 0

  operation.release.set()
  assert await original == "plan"
