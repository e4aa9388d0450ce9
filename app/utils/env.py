"""Minimal `.env` support so local runs pick up AIGYM_* settings."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = ('"', "'")


def default_env_path() -> Path:
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_line(line: str) -> tuple[str, str] | None:
  """Split one `KEY=value` line; comments, blanks, and malformed lines yield None."""
  line = line.strip()
  if not line or line.startswith("#"):
    return None

  line = line.removeprefix("export ").lstrip()
  key, separator, value = line.partition("=")
  key = key.strip()
  if not separator or not key:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
    value = value[1:-1]
  return key, value


def read_env_file(path: Path) -> dict[str, str]:
  if not path.is_file():
    return {}

  entries: dict[str, str] = {}
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = parse_env_line(raw_line)
    if parsed is not None:
      entries[parsed[0]] = parsed[1]
  return entries


def load_env_file(path: Path, *, override: bool = False) -> None:
  """Export the file's entries; real environment variables win unless `override`."""
  for key, value in read_env_file(path).items():
    if override or key not in os.environ:
      os.environ[key] = value
