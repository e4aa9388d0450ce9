"""Persisted lifecycle tracking for streamed plan generations."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

import msgspec

from app.generation.models import GenerationRecord, GenerationType, PrefetchEntry
from app.storage.kv import KeyValueStorage

logger = logging.getLogger(__name__)

STORAGE_KEY = "aigym_generations"
PREFETCH_KEY = "aigym_prefetch"
GENERATION_TTL_SECONDS = 30 * 60
PREFETCH_LIMIT = 5

Listener = Callable[[], None]

_records_decoder = msgspec.json.Decoder(dict[str, GenerationRecord])
_prefetch_decoder = msgspec.json.Decoder(list[PrefetchEntry])


def canonicalize(params: Mapping[str, Any]) -> str:
  """Serialize params deterministically, independent of key order."""
  return json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)


def generate_id(kind: GenerationType, params: Mapping[str, Any]) -> str:
  """Derive a content-addressed record id from the type and canonical params."""
  digest = hashlib.sha256(f"{kind}\n{canonicalize(params)}".encode()).hexdigest()
  return f"{kind}_{digest[:24]}"


class GenerationStore:
  """Track generation records across restarts on top of a key-value substrate.

  How/Why:
    - All records live in one JSON document so a single read-modify-write
      covers a record update; the lock serializes those cycles across threads.
    - Expiry is lazy: stale records are purged when `get` encounters them.
    - Listeners receive no payload and are called after every successful write.
  """

  def __init__(self, storage: KeyValueStorage, *, ttl_seconds: float = GENERATION_TTL_SECONDS, prefetch_limit: int = PREFETCH_LIMIT, clock: Callable[[], float] = time.time) -> None:
    self._storage = storage
    self._ttl_seconds = ttl_seconds
    self._prefetch_limit = prefetch_limit
    self._clock = clock
    self._lock = threading.RLock()
    self._listeners: list[Listener] = []

  # -- persistence -----------------------------------------------------------

  def _read_records(self) -> dict[str, GenerationRecord]:
    raw = self._storage.get(STORAGE_KEY)
    if not raw:
      return {}
    try:
      return _records_decoder.decode(raw)
    except msgspec.DecodeError as exc:
      logger.warning("Discarding unreadable generation records: %s", exc)
      return {}

  def _write_records(self, records: dict[str, GenerationRecord]) -> None:
    self._storage.set(STORAGE_KEY, msgspec.json.encode(records).decode("utf-8"))

  def _is_expired(self, record: GenerationRecord) -> bool:
    return self._clock() - record.updated_at > self._ttl_seconds

  # -- change notification ---------------------------------------------------

  def subscribe(self, listener: Listener) -> Callable[[], None]:
    """Register `listener`; the returned callable unsubscribes it (idempotent)."""
    self._listeners.append(listener)

    def unsubscribe() -> None:
      if listener in self._listeners:
        self._listeners.remove(listener)

    return unsubscribe

  def _notify(self) -> None:
    # Iterate over a snapshot so listeners may unsubscribe mid-notification.
    for listener in list(self._listeners):
      try:
        listener()
      except Exception:  # noqa: BLE001
        logger.exception("Generation store listener failed")

  # -- lifecycle -------------------------------------------------------------

  def generate_id(self, kind: GenerationType, params: Mapping[str, Any]) -> str:
    return generate_id(kind, params)

  def start(self, kind: GenerationType, params: Mapping[str, Any]) -> str:
    """Create a pending record, overwriting any earlier record for the same params."""
    record_id = generate_id(kind, params)
    now = self._clock()
    record = GenerationRecord(id=record_id, type=kind, params=dict(params), status="pending", started_at=now, updated_at=now)

    with self._lock:
      records = self._read_records()
      records[record_id] = record
      self._write_records(records)

    logger.debug("Started generation id=%s type=%s", record_id, kind)
    self._notify()
    return record_id

  def _mutate(self, record_id: str, apply: Callable[[GenerationRecord], None]) -> bool:
    with self._lock:
      records = self._read_records()
      record = records.get(record_id)
      if record is None:
        return False
      # Terminal records only leave through deletion or expiry.
      if record.is_terminal:
        logger.debug("Ignoring update for terminal generation id=%s status=%s", record_id, record.status)
        return False

      apply(record)
      record.updated_at = self._clock()
      self._write_records(records)

    self._notify()
    return True

  def update_progress(self, record_id: str, progress: int, partial_content: str) -> bool:
    """Move the record to streaming with caller-supplied progress and partial text."""

    def apply(record: GenerationRecord) -> None:
      record.status = "streaming"
      record.progress = progress
      record.partial_content = partial_content

    return self._mutate(record_id, apply)

  def complete(self, record_id: str, result: Any) -> bool:
    """Finish the record with its validated result."""

    def apply(record: GenerationRecord) -> None:
      record.status = "completed"
      record.progress = 100
      record.result = result

    updated = self._mutate(record_id, apply)
    if updated:
      logger.info("Generation completed id=%s", record_id)
    return updated

  def fail(self, record_id: str, error: str) -> bool:
    """Mark the record failed, keeping any partial content and progress."""

    def apply(record: GenerationRecord) -> None:
      record.status = "failed"
      record.error = error

    updated = self._mutate(record_id, apply)
    if updated:
      logger.info("Generation failed id=%s error=%s", record_id, error)
    return updated

  # -- reads -----------------------------------------------------------------

  def get(self, record_id: str) -> GenerationRecord | None:
    """Return the record, purging it first if it has outlived the TTL."""
    with self._lock:
      records = self._read_records()
      record = records.get(record_id)
      if record is None:
        return None
      if not self._is_expired(record):
        return record

      # Purge within the same locked read-modify-write as the lookup.
      del records[record_id]
      self._write_records(records)

    logger.info("Purging expired generation id=%s", record_id)
    self._notify()
    return None

  def get_by_params(self, kind: GenerationType, params: Mapping[str, Any]) -> GenerationRecord | None:
    return self.get(generate_id(kind, params))

  def get_incomplete(self, kind: GenerationType) -> GenerationRecord | None:
    """Return the first live streaming record of `kind`, in storage order."""
    with self._lock:
      records = self._read_records()

    for record in records.values():
      if record.type == kind and record.status == "streaming" and not self._is_expired(record):
        return record
    return None

  def list_records(self, kind: GenerationType | None = None) -> list[GenerationRecord]:
    """Return live records, optionally filtered by type."""
    with self._lock:
      records = self._read_records()
    return [record for record in records.values() if (kind is None or record.type == kind) and not self._is_expired(record)]

  # -- deletion --------------------------------------------------------------

  def remove(self, record_id: str) -> None:
    with self._lock:
      records = self._read_records()
      records.pop(record_id, None)
      self._write_records(records)
    self._notify()

  def clear(self, kind: GenerationType | None = None) -> None:
    """Delete all records of `kind`, or every record when no kind is given."""
    with self._lock:
      if kind is None:
        self._storage.remove(STORAGE_KEY)
      else:
        records = {record_id: record for record_id, record in self._read_records().items() if record.type != kind}
        self._write_records(records)
    self._notify()

  # -- prefetch queue --------------------------------------------------------

  def get_prefetch_queue(self) -> list[PrefetchEntry]:
    raw = self._storage.get(PREFETCH_KEY)
    if not raw:
      return []
    try:
      return _prefetch_decoder.decode(raw)
    except msgspec.DecodeError as exc:
      logger.warning("Discarding unreadable prefetch queue: %s", exc)
      return []

  def add_to_prefetch(self, kind: GenerationType, params: Mapping[str, Any], priority: int = 1) -> bool:
    """Queue speculative params unless already queued; keep the top entries by priority.

    Returns False when the params were already queued or ranked below the queue limit.
    """
    entry = PrefetchEntry(params={**params, "_type": kind}, priority=priority, created_at=self._clock())
    fingerprint = canonicalize(entry.params)

    with self._lock:
      queue = self.get_prefetch_queue()
      if any(canonicalize(existing.params) == fingerprint for existing in queue):
        return False

      queue.append(entry)
      # Stable sort keeps insertion order among equal priorities.
      queue.sort(key=lambda item: item.priority, reverse=True)
      del queue[self._prefetch_limit :]
      if not any(item is entry for item in queue):
        return False
      self._storage.set(PREFETCH_KEY, msgspec.json.encode(queue).decode("utf-8"))

    self._notify()
    return True

  def clear_prefetch(self) -> None:
    with self._lock:
      self._storage.remove(PREFETCH_KEY)
    self._notify()
