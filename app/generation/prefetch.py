"""Debounced speculative prefetching driven by partially filled forms."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from types import TracebackType
from typing import Any

from app.generation.models import GenerationType
from app.generation.store import GenerationStore, canonicalize

logger = logging.getLogger(__name__)

PREFETCH_DEBOUNCE_SECONDS = 2.0
MAX_PREDICTIONS = 2

_EQUIPMENT_VARIANTS = ("fullGym", "homeBasic", "bodyweight")
_CALORIE_VARIANTS = (1800, 2000, 2200, 2500)


def predict_workout_params(partial: Mapping[str, Any]) -> list[dict[str, Any]]:
  """Guess likely complete workout forms once goal and level are chosen."""
  if not partial.get("fitnessGoal") or not partial.get("experienceLevel"):
    return []

  predictions = []
  for equipment in _EQUIPMENT_VARIANTS:
    predictions.append(
      {
        "fitnessGoal": partial["fitnessGoal"],
        "experienceLevel": partial["experienceLevel"],
        "focusAreas": partial.get("focusAreas") or ["fullBody"],
        "equipment": equipment,
        "daysPerWeek": partial.get("daysPerWeek") or 3,
        "sessionLength": partial.get("sessionLength") or 60,
      }
    )
  return predictions[:MAX_PREDICTIONS]


def predict_meal_params(partial: Mapping[str, Any]) -> list[dict[str, Any]]:
  """Guess likely complete meal forms once goal and diet type are chosen."""
  if not partial.get("nutritionGoal") or not partial.get("dietType"):
    return []

  predictions = []
  for calories in _CALORIE_VARIANTS:
    predictions.append(
      {
        "nutritionGoal": partial["nutritionGoal"],
        "dietType": partial["dietType"],
        "dailyCalories": calories,
        "mealsPerDay": partial.get("mealsPerDay") or 3,
        "dietaryRestrictions": partial.get("dietaryRestrictions") or "none",
        "cuisinePreference": partial.get("cuisinePreference") or "any",
      }
    )
  return predictions[:MAX_PREDICTIONS]


class PrefetchScheduler:
  """Queue a prefetch for the latest form state after it stops changing.

  Each call to `schedule` restarts the debounce timer. When the timer fires the
  params are skipped if a completed or streaming record already exists for
  them; otherwise they are queued in the store and `warm_up` runs with them.
  Warm-up failures are logged and never surface to the caller.
  """

  def __init__(self, store: GenerationStore, kind: GenerationType, warm_up: Callable[[dict[str, Any]], Awaitable[None]], *, debounce_seconds: float = PREFETCH_DEBOUNCE_SECONDS) -> None:
    self._store = store
    self._kind = kind
    self._warm_up = warm_up
    self._debounce_seconds = debounce_seconds
    self._timer: asyncio.Task[None] | None = None
    self._last_fired: str | None = None

  @property
  def pending(self) -> bool:
    return self._timer is not None and not self._timer.done()

  def schedule(self, params: Mapping[str, Any], priority: int = 1) -> None:
    fingerprint = canonicalize(params)
    if fingerprint == self._last_fired:
      return

    self.cancel()
    self._timer = asyncio.ensure_future(self._fire_later(dict(params), fingerprint, priority))

  async def _fire_later(self, params: dict[str, Any], fingerprint: str, priority: int) -> None:
    await asyncio.sleep(self._debounce_seconds)
    self._last_fired = fingerprint

    existing = self._store.get_by_params(self._kind, params)
    if existing is not None and existing.status in ("completed", "streaming"):
      logger.debug("Skipping prefetch; generation already %s id=%s", existing.status, existing.id)
      return

    self._store.add_to_prefetch(self._kind, params, priority)
    try:
      await self._warm_up(params)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Prefetch warm-up failed type=%s: %s", self._kind, exc)

  def cancel(self) -> None:
    if self._timer is not None and not self._timer.done():
      self._timer.cancel()
    self._timer = None

  async def __aenter__(self) -> PrefetchScheduler:
    return self

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
    self.cancel()
