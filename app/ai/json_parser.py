"""Lenient JSON parsing helpers for LLM outputs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

_JSON_FENCE = "```json"
_PLAIN_FENCE = "```"


@dataclass(frozen=True)
class JsonParseResult:
  """Outcome of parsing model output without raising."""

  success: bool
  data: Any = None
  error: str | None = None


def strip_json_fences(raw: str) -> str:
  """Remove a leading/trailing markdown code fence around a JSON payload."""
  cleaned = raw.strip()

  # Drop the opening fence, preferring the language-tagged form.
  if cleaned.startswith(_JSON_FENCE):
    cleaned = cleaned[len(_JSON_FENCE) :]
  elif cleaned.startswith(_PLAIN_FENCE):
    cleaned = cleaned[len(_PLAIN_FENCE) :]

  if cleaned.endswith(_PLAIN_FENCE):
    cleaned = cleaned[: -len(_PLAIN_FENCE)]

  return cleaned.strip()


def parse_json_leniently(raw: str) -> JsonParseResult:
  """Parse model output after fence stripping, reporting failures instead of raising."""
  try:
    return JsonParseResult(success=True, data=json.loads(strip_json_fences(raw)))
  except json.JSONDecodeError as exc:
    return JsonParseResult(success=False, error=str(exc))
