"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class FilterRecord(Base):
    """Discover facets remembered for one catalog server."""

    __tablename__ = "filter_states"

    service_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    media_kind: Mapped[str] = mapped_column(String(16), default="movie")
    provider_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    genre_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    keyword_ids: Mapped[list[int]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
