from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings


class Base(DeclarativeBase):
  pass


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


def _database_url() -> str | None:
  """Build the SQLAlchemy database URL for the optional Postgres cache."""
  database_url = get_settings().pg_dsn
  if database_url and database_url.startswith("postgresql://"):
    database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

  return database_url


def get_db_engine() -> AsyncEngine | None:
  global engine
  database_url = _database_url()
  if engine is None and database_url:
    engine = create_async_engine(database_url, echo=get_settings().debug, future=True)
  return engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global SessionLocal
  if SessionLocal is None:
    db_engine = get_db_engine()
    if db_engine:
      SessionLocal = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal
