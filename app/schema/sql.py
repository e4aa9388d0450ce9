from __future__ import annotations

import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class ApiCacheEntry(Base):
  __tablename__ = "api_cache"

  cache_key: Mapped[str] = mapped_column(String, primary_key=True)
  response: Mapped[dict] = mapped_column(JSONB, nullable=False)
  expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
