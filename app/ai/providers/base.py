"""Base interfaces for AI providers and models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


class AIModel(ABC):
  """Abstract base class for chat-completion models that return JSON plans."""

  name: str

  @abstractmethod
  def stream(self, *, system: str, prompt: str) -> AsyncIterator[str]:
    """Yield content deltas for a JSON-mode completion."""

  async def warm_up(self) -> None:
    """Prime the provider connection without generating anything."""
