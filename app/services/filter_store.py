"""Persistence for discover facets keyed by catalog server."""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import FilterRecord
from ..models import FilterSnapshot

logger = logging.getLogger(__name__)


class FilterStore:
    """Load and save :class:`FilterSnapshot` rows in the ``filter_states`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, service_key: str) -> FilterSnapshot | None:
        async with self._session_factory() as session:
            record = await session.get(FilterRecord, service_key)
            if record is None:
                return None
            try:
                return FilterSnapshot(
                    media_kind=record.media_kind,
                    provider_ids=record.provider_ids or [],
                    genre_ids=record.genre_ids or [],
                    keyword_ids=record.keyword_ids or [],
                )
            except ValidationError:
                logger.warning(
                    "Ignoring unreadable filter state stored for %s", service_key
                )
                return None

    async def save(self, service_key: str, snapshot: FilterSnapshot) -> None:
        now = datetime.utcnow()
        async with self._session_factory() as session:
            record = await session.get(FilterRecord, service_key)
            if record is None:
                record = FilterRecord(service_key=service_key, created_at=now)
                session.add(record)
            record.media_kind = snapshot.media_kind.value
            record.provider_ids = list(snapshot.provider_ids)
            record.genre_ids = list(snapshot.genre_ids)
            record.keyword_ids = list(snapshot.keyword_ids)
            record.updated_at = now
            await session.commit()

    async def delete(self, service_key: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(FilterRecord).where(FilterRecord.service_key == service_key)
            )
            await session.commit()
