"""Domain models for tracked plan generations and the prefetch queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

GenerationType = Literal["workout", "meal"]
GenerationStatus = Literal["pending", "streaming", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass
class GenerationRecord:
  """Lifecycle state of one plan-generation request."""

  id: str
  type: GenerationType
  params: dict[str, Any]
  status: GenerationStatus
  started_at: float
  updated_at: float
  progress: int = 0
  partial_content: str = ""
  result: Any = None
  error: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass
class PrefetchEntry:
  """Speculative future request, tagged with its generation type."""

  params: dict[str, Any] = field(default_factory=dict)
  priority: int = 1
  created_at: float = 0.0

  @property
  def type(self) -> str | None:
    return self.params.get("_type")
