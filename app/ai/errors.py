"""Shared error classification helpers for plan generation."""

from __future__ import annotations

import asyncio


class GenerationError(RuntimeError):
  """Base error for failures raised while producing a plan."""


class GenerationValidationError(GenerationError):
  """Raised when an LLM response fails structural or completeness checks."""

  def __init__(self, message: str, *, retryable: bool = True) -> None:
    super().__init__(message)
    self.retryable = retryable


class LLMResponseError(GenerationError):
  """Raised when the provider returns an empty or unusable completion."""


class RequestCancelledError(GenerationError):
  """Raised to every awaiter of a deduplicated operation that was cancelled."""

  def __init__(self, key: str) -> None:
    super().__init__(f"Request was cancelled: {key}")
    self.key = key


def is_retryable(exc: BaseException) -> bool:
  """Return True when the same logical operation may succeed if attempted again."""
  # Cancellation is a distinct outcome and never counts as a retryable failure.
  if isinstance(exc, (RequestCancelledError, asyncio.CancelledError)):
    return False
  if isinstance(exc, GenerationValidationError):
    return exc.retryable
  return isinstance(exc, Exception)
