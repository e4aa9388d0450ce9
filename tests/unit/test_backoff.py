from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from app.ai.backoff import backoff_delay_ms, retry_with_backoff
from app.ai.errors import GenerationValidationError, RequestCancelledError


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> AsyncMock:
  fake_sleep = AsyncMock()
  monkeypatch.setattr("app.ai.backoff.asyncio.sleep", fake_sleep)
  return fake_sleep


def test_backoff_delay_doubles_from_base() -> None:
  assert [backoff_delay_ms(attempt, 1000) for attempt in (1, 2, 3)] == [1000, 2000, 4000]


@pytest.mark.anyio
async def test_always_failing_operation_runs_max_retries_plus_one(sleeps: AsyncMock) -> None:
  operation = AsyncMock(side_effect=GenerationValidationError("Incomplete plan"))

  with pytest.raises(GenerationValidationError, match="Incomplete plan"):
    await retry_with_backoff(operation, max_retries=2)

  assert operation.await_count == 3
  assert [call.args[0] for call in sleeps.await_args_list] == [1.0, 2.0]


@pytest.mark.anyio
async def test_returns_first_success_and_reports_retries(sleeps: AsyncMock) -> None:
  operation = AsyncMock(side_effect=[ValueError("bad json"), {"plan": 1}])
  retries: list[tuple[int, str]] = []

  result = await retry_with_backoff(operation, max_retries=2, base_delay_ms=10, on_retry=lambda attempt, reason: retries.append((attempt, reason)))

  assert result == {"plan": 1}
  assert retries == [(1, "bad json")]
  sleeps.assert_awaited_once_with(0.01)


@pytest.mark.anyio
async def test_non_retryable_validation_error_is_raised_immediately(sleeps: AsyncMock) -> None:
  operation = AsyncMock(side_effect=GenerationValidationError("Unknown validation error", retryable=False))

  with pytest.raises(GenerationValidationError):
    await retry_with_backoff(operation, max_retries=2)

  assert operation.await_count == 1
  sleeps.assert_not_awaited()


@pytest.mark.anyio
async def test_cancellation_is_never_retried(sleeps: AsyncMock) -> None:
  operation = AsyncMock(side_effect=RequestCancelledError("/api/meal/generate:{}"))

  with pytest.raises(RequestCancelledError):
    await retry_with_backoff(operation, max_retries=2)

  operation.side_effect = asyncio.CancelledError()
  with pytest.raises(asyncio.CancelledError):
    await retry_with_backoff(operation, max_retries=2)

  assert operation.await_count == 2
  sleeps.assert_not_awaited()
