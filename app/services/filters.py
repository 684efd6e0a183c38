"""User-selected discover facets with debounced persistence."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from ..debounce import Debouncer
from ..models import FilterSnapshot, MediaKind
from .filter_store import FilterStore

logger = logging.getLogger(__name__)

FilterListener = Callable[[str], Any]

MEDIA_KIND = "media_kind"
PROVIDERS = "providers"
GENRES = "genres"
KEYWORDS = "keywords"


class FilterState:
    """Facets that shape discover results.

    Every setter compares against the current value and returns whether
    anything changed. Only real changes notify listeners and schedule a
    save, so repeated writes of the same value never trigger reloads.
    """

    def __init__(
        self,
        snapshot: FilterSnapshot | None = None,
        *,
        store: FilterStore | None = None,
        service_key: str = "default",
        persist_delay: float = 0.5,
    ) -> None:
        snapshot = snapshot or FilterSnapshot()
        self._media_kind = snapshot.media_kind
        self._provider_ids = frozenset(snapshot.provider_ids)
        self._genre_ids = frozenset(snapshot.genre_ids)
        self._keyword_ids = frozenset(snapshot.keyword_ids)
        self._store = store
        self._service_key = service_key
        self._listeners: list[FilterListener] = []
        self._persister: Debouncer[FilterSnapshot] = Debouncer(persist_delay, self._persist)

    @classmethod
    async def load(
        cls,
        store: FilterStore,
        service_key: str,
        *,
        persist_delay: float = 0.5,
    ) -> "FilterState":
        """Build the state from the stored snapshot, or defaults when absent."""

        snapshot = await store.load(service_key)
        if snapshot is None:
            logger.info("No stored filters for %s, using defaults", service_key)
        return cls(
            snapshot,
            store=store,
            service_key=service_key,
            persist_delay=persist_delay,
        )

    # -- facets -------------------------------------------------------------

    @property
    def media_kind(self) -> MediaKind:
        return self._media_kind

    @property
    def provider_ids(self) -> frozenset[int]:
        return self._provider_ids

    @property
    def genre_ids(self) -> frozenset[int]:
        return self._genre_ids

    @property
    def keyword_ids(self) -> frozenset[int]:
        return self._keyword_ids

    def set_media_kind(self, kind: MediaKind) -> bool:
        kind = MediaKind(kind)
        if kind == self._media_kind:
            return False
        self._media_kind = kind
        self._changed(MEDIA_KIND)
        return True

    def set_provider_ids(self, ids: Iterable[int]) -> bool:
        ids = frozenset(int(value) for value in ids)
        if ids == self._provider_ids:
            return False
        self._provider_ids = ids
        self._changed(PROVIDERS)
        return True

    def toggle_provider(self, provider_id: int) -> bool:
        return self.set_provider_ids(self._provider_ids ^ {int(provider_id)})

    def set_genre_ids(self, ids: Iterable[int]) -> bool:
        ids = frozenset(int(value) for value in ids)
        if ids == self._genre_ids:
            return False
        self._genre_ids = ids
        self._changed(GENRES)
        return True

    def toggle_genre(self, genre_id: int) -> bool:
        return self.set_genre_ids(self._genre_ids ^ {int(genre_id)})

    def set_active_keyword_ids(self, ids: Iterable[int]) -> bool:
        ids = frozenset(int(value) for value in ids)
        if ids == self._keyword_ids:
            return False
        self._keyword_ids = ids
        self._changed(KEYWORDS)
        return True

    def add_keyword(self, keyword_id: int) -> bool:
        return self.set_active_keyword_ids(self._keyword_ids | {int(keyword_id)})

    def remove_keyword(self, keyword_id: int) -> bool:
        return self.set_active_keyword_ids(self._keyword_ids - {int(keyword_id)})

    # -- observation and persistence ----------------------------------------

    def on_change(self, listener: FilterListener) -> None:
        """Register ``listener`` to receive the name of each changed facet."""

        self._listeners.append(listener)

    def snapshot(self) -> FilterSnapshot:
        return FilterSnapshot(
            media_kind=self._media_kind,
            provider_ids=self._provider_ids,
            genre_ids=self._genre_ids,
            keyword_ids=self._keyword_ids,
        )

    @property
    def has_pending_save(self) -> bool:
        return self._persister.pending

    async def flush(self) -> None:
        """Write any pending change now instead of waiting for the delay."""

        if self._store is None:
            return
        if self._persister.pending:
            self._persister.cancel()
            await self._persister.flush()
            await self._persist(self.snapshot())

    async def aclose(self) -> None:
        await self.flush()
        await self._persister.aclose()

    def _changed(self, field: str) -> None:
        if self._store is not None:
            self._persister.push(self.snapshot())
        for listener in list(self._listeners):
            try:
                listener(field)
            except Exception:
                logger.exception("Filter listener %r failed for %s", listener, field)

    async def _persist(self, snapshot: FilterSnapshot) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(self._service_key, snapshot)
        except Exception:
            logger.exception("Failed to persist filters for %s", self._service_key)
        else:
            logger.debug("Persisted filters for %s", self._service_key)
