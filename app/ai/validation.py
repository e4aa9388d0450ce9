"""Validation, sanitization, and completeness rules for LLM plan output."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

MEAL_PLAN_DAYS: tuple[str, ...] = ("day1", "day2", "day3", "day4", "day5", "day6", "day7")

# Ordered replacements; none of the outputs contain a later pattern.
_ESCAPES: tuple[tuple[str, str], ...] = (
  ("<", "&lt;"),
  (">", "&gt;"),
  ('"', "&quot;"),
  ("'", "&#x27;"),
  ("/", "&#x2F;"),
  ("`", "&#x60;"),
  ("${", "&#36;{"),
)


@dataclass(frozen=True)
class ValidationResult:
  """Outcome of a validation rule, with a retry hint for the caller."""

  success: bool
  data: Any = None
  error: str | None = None
  retryable: bool = False


def _failure(message: str, *, retryable: bool = True) -> ValidationResult:
  return ValidationResult(success=False, error=message, retryable=retryable)


def sanitize_string(value: str) -> str:
  """Escape HTML/script-significant characters in a single string."""
  for needle, replacement in _ESCAPES:
    value = value.replace(needle, replacement)
  return value


def sanitize_object(value: Any) -> Any:
  """Recursively escape every string inside a JSON-like object graph."""
  if isinstance(value, str):
    return sanitize_string(value)

  if isinstance(value, list):
    return [sanitize_object(item) for item in value]

  if isinstance(value, tuple):
    return tuple(sanitize_object(item) for item in value)

  # Keys are left untouched; only values are escaped.
  if isinstance(value, Mapping):
    return {key: sanitize_object(item) for key, item in value.items()}

  return value


def _format_pydantic_errors(exc: ValidationError) -> str:
  issues = []
  for error in exc.errors():
    location = ".".join(str(part) for part in error.get("loc", ()))
    issues.append(f"{location}: {error.get('msg', 'invalid value')}")
  return ", ".join(issues)


def validate_against_schema(data: Any, schema: type[BaseModel]) -> ValidationResult:
  """Validate `data` against a pydantic model and return the sanitized dump."""
  try:
    parsed = schema.model_validate(data)
  except ValidationError as exc:
    # Shape errors are retryable; the model may produce a better response next time.
    return _failure(f"Validation failed: {_format_pydantic_errors(exc)}", retryable=True)
  except Exception:  # noqa: BLE001
    return _failure("Unknown validation error", retryable=False)

  return ValidationResult(success=True, data=sanitize_object(parsed.model_dump(by_alias=True, mode="json", exclude_none=True)), retryable=False)


def validate_workout_completeness(data: Any, expected_days: int) -> ValidationResult:
  """Require `expected_days` workout days, each with a non-empty exercise list."""
  if not isinstance(data, Mapping):
    return _failure("Invalid response structure")

  workouts = data.get("workouts")
  if not isinstance(workouts, Mapping):
    return _failure("Missing workouts object")

  day_entries = [(key, value) for key, value in workouts.items() if str(key).startswith("day")]
  if len(day_entries) < expected_days:
    return _failure(f"Incomplete plan: expected {expected_days} days, got {len(day_entries)}")

  for day, workout in day_entries:
    if not isinstance(workout, Mapping):
      return _failure(f"{day} is invalid")

    exercises = workout.get("exercises")
    if not isinstance(exercises, list) or not exercises:
      return _failure(f"{day} has no exercises")

  return ValidationResult(success=True, data=data)


def validate_meal_completeness(data: Any) -> ValidationResult:
  """Require exactly the seven days day1..day7, each a non-empty list of meals."""
  if not isinstance(data, Mapping):
    return _failure("Invalid response structure")

  meals = data.get("meals")
  if not isinstance(meals, Mapping):
    return _failure("Missing meals object")

  missing_days = [day for day in MEAL_PLAN_DAYS if day not in meals]
  if missing_days:
    return _failure(f"Missing days: {', '.join(missing_days)}")

  unexpected_days = [str(key) for key in meals if key not in MEAL_PLAN_DAYS]
  if unexpected_days:
    return _failure(f"Unexpected days: {', '.join(unexpected_days)}")

  for day in MEAL_PLAN_DAYS:
    day_meals = meals[day]
    if not isinstance(day_meals, list):
      return _failure(f"{day} meals is not a list")
    if not day_meals:
      return _failure(f"{day} has no meals")

  return ValidationResult(success=True, data=data)
