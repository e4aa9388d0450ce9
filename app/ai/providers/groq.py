"""Groq provider implementation using the OpenAI-compatible SDK."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from openai import AsyncOpenAI

from app.ai.providers.base import AIModel
from app.config import Settings

logger = logging.getLogger("app.ai.providers.groq")


class GroqModel(AIModel):
  """Groq chat model client with JSON-mode streaming."""

  def __init__(self, name: str, *, api_key: str, base_url: str, temperature: float = 0.7) -> None:
    if not api_key:
      raise ValueError("GROQ_API_KEY environment variable is required")

    self.name: str = name
    self._temperature = temperature
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

  async def stream(self, *, system: str, prompt: str) -> AsyncIterator[str]:
    """Yield content deltas as the model produces them."""
    response = await self._client.chat.completions.create(
      model=self.name,
      messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
      response_format={"type": "json_object"},
      temperature=self._temperature,
      stream=True,
    )

    async for event in response:
      if not event.choices:
        continue
      delta = event.choices[0].delta.content
      if delta:
        yield delta

  async def warm_up(self) -> None:
    """List models to open a pooled connection ahead of a likely generation."""
    await self._client.models.list()
    logger.debug("Groq connection warmed for model=%s", self.name)


def build_model(settings: Settings) -> GroqModel | None:
  """Return the configured model client, or None when no API key is set."""
  if not settings.groq_api_key:
    logger.warning("GROQ_API_KEY is not configured; plan generation is unavailable.")
    return None
  return GroqModel(settings.llm_model, api_key=settings.groq_api_key, base_url=settings.llm_base_url, temperature=settings.llm_temperature)
