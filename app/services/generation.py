"""Plan generation orchestration: stream, validate, retry, dedupe, and cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.ai.backoff import retry_with_backoff
from app.ai.errors import GenerationError, GenerationValidationError, LLMResponseError, RequestCancelledError
from app.ai.json_parser import parse_json_leniently
from app.ai.prompts import PlanPrompt, build_meal_prompt, build_workout_prompt
from app.ai.providers.base import AIModel
from app.ai.validation import ValidationResult, validate_against_schema, validate_meal_completeness, validate_workout_completeness
from app.generation.models import GenerationType
from app.generation.store import GenerationStore
from app.schema.plans import CamelModel, MealFormData, MealPlan, WorkoutFormData, WorkoutPlan
from app.services.request_dedup import CancellationToken, RequestDeduplicator, generate_request_key
from app.storage.response_cache import ResponseCache, generate_cache_key

logger = logging.getLogger(__name__)

Frame = dict[str, Any]

CANCELLED_MESSAGE = "Generation was cancelled"

# Progress while streaming never reaches 100; completion sets it.
STREAMING_PROGRESS_CAP = 95
_CHARS_PER_WORKOUT_DAY = 1200
_CHARS_PER_MEAL = 650


@dataclass(frozen=True)
class PlanKind:
  """Everything that differs between workout and meal generation."""

  kind: GenerationType
  endpoint: str
  form_model: type[CamelModel]
  plan_model: type[BaseModel]
  build_prompt: Callable[[Any], PlanPrompt]
  check_completeness: Callable[[Any, Any], ValidationResult]
  expected_length: Callable[[Any], int]


WORKOUT = PlanKind(
  kind="workout",
  endpoint="/api/workout/generate",
  form_model=WorkoutFormData,
  plan_model=WorkoutPlan,
  build_prompt=build_workout_prompt,
  check_completeness=lambda data, form: validate_workout_completeness(data, form.days_per_week),
  expected_length=lambda form: form.days_per_week * _CHARS_PER_WORKOUT_DAY,
)

MEAL = PlanKind(
  kind="meal",
  endpoint="/api/meal/generate",
  form_model=MealFormData,
  plan_model=MealPlan,
  build_prompt=build_meal_prompt,
  check_completeness=lambda data, form: validate_meal_completeness(data),
  expected_length=lambda form: 7 * form.meals_per_day * _CHARS_PER_MEAL,
)

PLAN_KINDS: dict[str, PlanKind] = {WORKOUT.kind: WORKOUT, MEAL.kind: MEAL}


def _failure_message(plan_kind: PlanKind) -> str:
  return f"Failed to generate {plan_kind.kind} plan. Please try again."


def estimate_progress(received_chars: int, expected_chars: int) -> int:
  """Map received characters to a streaming percentage capped below completion."""
  if expected_chars <= 0:
    return 0
  return min(int(received_chars * 100 / expected_chars), STREAMING_PROGRESS_CAP)


def validate_plan_output(plan_kind: PlanKind, form: Any, content: str) -> dict[str, Any]:
  """Turn raw model text into a sanitized plan or raise a classified error."""
  if not content.strip():
    raise LLMResponseError("Received empty response from AI service")

  parsed = parse_json_leniently(content)
  if not parsed.success:
    raise GenerationValidationError(f"Invalid JSON from model: {parsed.error}", retryable=True)

  completeness = plan_kind.check_completeness(parsed.data, form)
  if not completeness.success:
    raise GenerationValidationError(completeness.error or "Incomplete plan", retryable=completeness.retryable)

  validated = validate_against_schema(parsed.data, plan_kind.plan_model)
  if not validated.success:
    raise GenerationValidationError(validated.error or "Validation failed", retryable=validated.retryable)

  return validated.data


async def _drain(queue: asyncio.Queue[Frame], task: asyncio.Future[Any]) -> AsyncIterator[Frame]:
  """Yield queued frames until `task` settles, then flush what is left."""
  getter: asyncio.Future[Frame] | None = None
  try:
    while True:
      getter = asyncio.ensure_future(queue.get())
      done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
      if getter not in done:
        break
      yield getter.result()
  finally:
    if getter is not None and not getter.done():
      getter.cancel()

  while not queue.empty():
    yield queue.get_nowait()


class PlanGenerationService:
  """Coordinate the model, retries, deduplication, generation records, and the response cache."""

  def __init__(
    self,
    model: AIModel,
    deduplicator: RequestDeduplicator,
    *,
    store: GenerationStore | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    max_retries: int = 2,
    base_delay_ms: int = 1000,
    cache_ttl_minutes: int = 60,
  ) -> None:
    self._model = model
    self._deduplicator = deduplicator
    self._store = store
    self._session_factory = session_factory
    self._max_retries = max_retries
    self._base_delay_ms = base_delay_ms
    self._cache_ttl_minutes = cache_ttl_minutes

  @property
  def model(self) -> AIModel:
    return self._model

  # -- cache -----------------------------------------------------------------

  async def cached_plan(self, plan_kind: PlanKind, form: CamelModel) -> dict[str, Any] | None:
    if self._session_factory is None:
      return None
    async with self._session_factory() as session:
      return await ResponseCache(session).get(generate_cache_key(plan_kind.kind, form.to_wire()))

  async def _store_plan(self, plan_kind: PlanKind, form: CamelModel, plan: dict[str, Any]) -> None:
    if self._session_factory is None:
      return
    async with self._session_factory() as session:
      await ResponseCache(session).set(generate_cache_key(plan_kind.kind, form.to_wire()), plan, self._cache_ttl_minutes)

  # -- generation records ----------------------------------------------------

  def _record_emitter(self, record_id: str | None, emit: Callable[[Frame], None]) -> Callable[[Frame], None]:
    """Wrap `emit` so streamed frames also advance the generation record."""
    if self._store is None or record_id is None:
      return emit

    store = self._store
    partial = ""
    last_progress = -1

    def emit_and_record(frame: Frame) -> None:
      nonlocal partial, last_progress
      emit(frame)
      if "retry" in frame:
        partial = ""
        last_progress = -1
        store.update_progress(record_id, 0, "")
        return

      partial += frame.get("chunk", "")
      # Persist once per progress step rather than once per token.
      if frame["progress"] != last_progress:
        last_progress = frame["progress"]
        store.update_progress(record_id, last_progress, partial)

    return emit_and_record

  def _fail_record(self, record_id: str | None, error: str) -> None:
    if self._store is not None and record_id is not None:
      self._store.fail(record_id, error)

  # -- generation ------------------------------------------------------------

  async def stream_plan(self, plan_kind: PlanKind, form: Any, emit: Callable[[Frame], None], token: CancellationToken | None = None) -> dict[str, Any]:
    """Generate one plan, emitting progress frames; retries whole attempts with backoff."""
    prompt = plan_kind.build_prompt(form)
    expected_chars = plan_kind.expected_length(form)

    async def attempt() -> dict[str, Any]:
      content = ""
      async for delta in self._model.stream(system=prompt.system, prompt=prompt.user):
        if token is not None:
          token.raise_if_cancelled()
        content += delta
        emit({"progress": estimate_progress(len(content), expected_chars), "chunk": delta})
      return validate_plan_output(plan_kind, form, content)

    def on_retry(attempt_number: int, reason: str) -> None:
      # Partial output from the failed attempt is discarded by the consumer.
      emit({"progress": 0, "retry": attempt_number, "reason": reason})

    return await retry_with_backoff(attempt, max_retries=self._max_retries, base_delay_ms=self._base_delay_ms, on_retry=on_retry)

  async def stream_events(self, plan_kind: PlanKind, form: CamelModel) -> AsyncIterator[Frame]:
    """Yield event-stream frames, sharing one generation among identical concurrent requests."""
    key = generate_request_key(plan_kind.endpoint, form.to_wire())
    queue: asyncio.Queue[Frame] = asyncio.Queue()

    if self._deduplicator.is_pending(key):
      # Joiners do not see the originator's chunks, only the final plan.
      logger.info("Joining in-flight generation key=%s", key)
      queue.put_nowait({"progress": 0, "joined": True})

    async def operation(token: CancellationToken) -> dict[str, Any]:
      record_id = self._store.start(plan_kind.kind, form.to_wire()) if self._store is not None else None
      try:
        plan = await self.stream_plan(plan_kind, form, self._record_emitter(record_id, queue.put_nowait), token)
      except (asyncio.CancelledError, RequestCancelledError):
        self._fail_record(record_id, CANCELLED_MESSAGE)
        raise
      except GenerationError as exc:
        self._fail_record(record_id, str(exc))
        raise
      except Exception:
        self._fail_record(record_id, _failure_message(plan_kind))
        raise

      if self._store is not None and record_id is not None:
        self._store.complete(record_id, plan)
      await self._store_plan(plan_kind, form, plan)
      return plan

    task = asyncio.ensure_future(self._deduplicator.dedupe(key, operation))
    try:
      async for frame in _drain(queue, task):
        yield frame

      plan = task.result()
    except RequestCancelledError:
      logger.info("Generation cancelled key=%s", key)
      yield {"error": CANCELLED_MESSAGE}
      return
    except GenerationError as exc:
      logger.error("Plan generation failed kind=%s error=%s", plan_kind.kind, exc)
      yield {"error": str(exc)}
      return
    except Exception:
      logger.exception("Unexpected plan generation failure kind=%s", plan_kind.kind)
      yield {"error": _failure_message(plan_kind)}
      return
    finally:
      # Client disconnects only detach this listener; the shared call keeps running.
      if not task.done():
        task.cancel()

    yield {"done": True, "plan": plan}

  async def warm_up(self) -> None:
    """Prime the provider connection once per burst of prefetch requests."""

    async def operation(token: CancellationToken) -> None:
      await self._model.warm_up()

    try:
      await self._deduplicator.dedupe("warm_up:provider", operation)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Provider warm-up failed: %s", exc)
