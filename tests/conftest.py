"""Shared fixtures for generation engine tests."""

from __future__ import annotations

import os

# Settings are cached on first import, so the environment must be ready first.
os.environ.setdefault("AIGYM_ALLOWED_ORIGINS", "http://localhost")
os.environ["AIGYM_STORE_DSN"] = "sqlite://"
os.environ.pop("AIGYM_PG_DSN", None)
os.environ.pop("DATABASE_URL", None)

import pytest  # noqa: E402

from app.generation.store import GenerationStore  # noqa: E402
from app.storage.kv import InMemoryKeyValueStorage  # noqa: E402


class FakeClock:
  """Manually advanced clock for TTL tests."""

  def __init__(self, start: float = 1_700_000_000.0) -> None:
    self.now = start

  def __call__(self) -> float:
    return self.now

  def advance(self, seconds: float) -> None:
    self.now += seconds


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def storage() -> InMemoryKeyValueStorage:
  return InMemoryKeyValueStorage()


@pytest.fixture
def store(storage: InMemoryKeyValueStorage, clock: FakeClock) -> GenerationStore:
  return GenerationStore(storage, clock=clock)


def _workout_plan(days: int = 3) -> dict:
  return {
    "summary": {"goal": "Strength", "level": "Beginner", "daysPerWeek": days, "sessionLength": 60, "focusAreas": ["Full Body"], "equipment": "Full Gym"},
    "overview": "Three full body sessions.",
    "workouts": {
      f"day{index + 1}": {
        "focus": "Full Body",
        "description": "Compound lifts",
        "exercises": [{"name": "Squat", "sets": 3, "reps": "5", "rest": "120 sec"}],
        "notes": ["Warm up first"],
      }
      for index in range(days)
    },
  }


def _meal_plan() -> dict:
  meal = {
    "name": "Oats",
    "foods": [{"name": "Rolled oats", "amount": "80g", "protein": 10, "carbs": 54, "fat": 6, "calories": 300}],
    "totals": {"protein": 10, "carbs": 54, "fat": 6, "calories": 300},
  }
  return {
    "summary": {"goal": "Fat Loss", "calories": 2000, "dietType": "Balanced", "mealsPerDay": 3, "restrictions": "None"},
    "overview": "A simple week.",
    "macros": {"protein": 125, "carbs": 250, "fat": 56},
    "meals": {f"day{index}": [dict(meal)] for index in range(1, 8)},
  }


@pytest.fixture
def workout_plan():
  """Factory for a valid workout plan with the given number of days."""
  return _workout_plan


@pytest.fixture
def meal_plan():
  return _meal_plan
