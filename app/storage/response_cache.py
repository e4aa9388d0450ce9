"""Postgres-backed cache of generated plans keyed by request payload."""

from __future__ import annotations

import datetime
import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.schema.sql import ApiCacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 60


def generate_cache_key(prefix: str, data: Mapping[str, Any]) -> str:
  """Return `<prefix>_<md5>` over the canonical JSON of `data`."""
  canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
  return f"{prefix}_{hashlib.md5(canonical.encode('utf-8'), usedforsecurity=False).hexdigest()}"


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class ResponseCache:
  """Best-effort response cache; database failures degrade to cache misses."""

  def __init__(self, session: AsyncSession, *, clock: Callable[[], datetime.datetime] = _utc_now) -> None:
    self._session = session
    self._clock = clock

  async def get(self, cache_key: str) -> dict[str, Any] | None:
    """Return the cached response, deleting it first if it has expired."""
    try:
      result = await self._session.execute(select(ApiCacheEntry).where(ApiCacheEntry.cache_key == cache_key))
      entry = result.scalar_one_or_none()
      if entry is None:
        return None

      if entry.expires_at < self._clock():
        await self._session.execute(delete(ApiCacheEntry).where(ApiCacheEntry.cache_key == cache_key))
        await self._session.commit()
        logger.debug("Evicted expired cache entry key=%s", cache_key)
        return None

      return entry.response
    except SQLAlchemyError as exc:
      await self._session.rollback()
      logger.warning("Cache read failed key=%s: %s", cache_key, exc)
      return None

  async def set(self, cache_key: str, response: dict[str, Any], ttl_minutes: int = DEFAULT_TTL_MINUTES) -> None:
    """Upsert `response` with an expiry `ttl_minutes` from now."""
    now = self._clock()
    expires_at = now + datetime.timedelta(minutes=ttl_minutes)
    statement = insert(ApiCacheEntry).values(cache_key=cache_key, response=response, expires_at=expires_at, created_at=now)
    statement = statement.on_conflict_do_update(index_elements=[ApiCacheEntry.cache_key], set_={"response": response, "expires_at": expires_at, "created_at": now})

    try:
      await self._session.execute(statement)
      await self._session.commit()
    except SQLAlchemyError as exc:
      await self._session.rollback()
      logger.warning("Cache write failed key=%s: %s", cache_key, exc)
