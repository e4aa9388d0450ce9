"""Key-value persistence substrates for the generation store."""

from __future__ import annotations

import datetime
import threading
from typing import Protocol

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, create_engine, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

kv_entries = Table(
  "aigym_kv_store",
  metadata,
  Column("key", String(255), primary_key=True),
  Column("value", Text, nullable=False),
  Column("updated_at", DateTime(timezone=True), nullable=False),
)


class KeyValueStorage(Protocol):
  """Synchronous string key-value contract with last-writer-wins semantics."""

  def get(self, key: str) -> str | None:
    """Return the stored value, or None when absent."""

  def set(self, key: str, value: str) -> None:
    """Store `value` under `key`, replacing any previous value."""

  def remove(self, key: str) -> None:
    """Delete `key`; absent keys are ignored."""


class InMemoryKeyValueStorage:
  """Process-local storage used by tests and ephemeral deployments."""

  def __init__(self) -> None:
    self._data: dict[str, str] = {}
    self._lock = threading.Lock()

  def get(self, key: str) -> str | None:
    with self._lock:
      return self._data.get(key)

  def set(self, key: str, value: str) -> None:
    with self._lock:
      self._data[key] = value

  def remove(self, key: str) -> None:
    with self._lock:
      self._data.pop(key, None)


class SqlKeyValueStorage:
  """Durable storage backed by a single SQL table (SQLite by default)."""

  def __init__(self, engine: Engine) -> None:
    self._engine = engine
    metadata.create_all(engine, tables=[kv_entries])

  @classmethod
  def from_dsn(cls, dsn: str) -> SqlKeyValueStorage:
    if dsn in ("sqlite://", "sqlite:///:memory:"):
      # One shared connection, otherwise every checkout sees an empty database.
      return cls(create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool))
    return cls(create_engine(dsn))

  def get(self, key: str) -> str | None:
    with self._engine.connect() as conn:
      return conn.execute(select(kv_entries.c.value).where(kv_entries.c.key == key)).scalar_one_or_none()

  def set(self, key: str, value: str) -> None:
    now = datetime.datetime.now(datetime.UTC)
    with self._engine.begin() as conn:
      result = conn.execute(update(kv_entries).where(kv_entries.c.key == key).values(value=value, updated_at=now))
      if result.rowcount == 0:
        conn.execute(insert(kv_entries).values(key=key, value=value, updated_at=now))

  def remove(self, key: str) -> None:
    with self._engine.begin() as conn:
      conn.execute(delete(kv_entries).where(kv_entries.c.key == key))

  def dispose(self) -> None:
    self._engine.dispose()
