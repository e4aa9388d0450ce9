import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from app.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False


class TruncatedFormatter(logging.Formatter):
  """Formatter that keeps only the head and tail of a traceback."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _backup_namer(default_name: str) -> str:
  """Name rotated files `engine.log-1` rather than `engine.log.1`."""
  base, _, suffix = default_name.rpartition(".")
  if base and suffix.isdigit():
    return f"{base}-{suffix}"
  return default_name


def _build_handlers(settings: Settings, log_dir: Path | None = None) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create the stdout handler and a rotating file handler under `logs/`."""
  log_dir = log_dir or Path(__file__).resolve().parents[2] / "logs"
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  log_path = log_dir / f"aigym_engine_{time.strftime('%Y%m%d_%H%M%S')}.log"
  try:
    log_path.touch(exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log file at {log_path}: {exc}") from exc

  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.namer = _backup_namer
  file_handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return stream, file_handler, log_path


def setup_logging(settings: Settings, log_dir: Path | None = None) -> Path:
  """Route uvicorn, fastapi, and app loggers through the shared handlers."""
  stream_handler, file_handler, log_path = _build_handlers(settings, log_dir)
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  # Per-chunk SQL and HTTP wire logs drown out generation progress.
  for noisy in ("httpx", "httpcore", "openai", "sqlalchemy.engine"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

  if not log_path.exists():
    raise RuntimeError(f"Logging initialization failed; log file missing at {log_path}")
  return log_path


def _initialize_logging(settings: Settings) -> None:
  """Initialize logging once per process."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  if _LOGGING_INITIALIZED:
    return

  _LOG_FILE_PATH = setup_logging(settings)
  _LOGGING_INITIALIZED = True
  logging.getLogger("app.core.logging").info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
