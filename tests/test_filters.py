"""Facet state change detection and debounced persistence."""

from __future__ import annotations

import asyncio

import pytest

from app.models import FilterSnapshot, MediaKind
from app.services.filters import GENRES, KEYWORDS, MEDIA_KIND, PROVIDERS, FilterState


class MemoryStore:
    def __init__(self, snapshot: FilterSnapshot | None = None, *, fail: bool = False) -> None:
        self.saved: list[tuple[str, FilterSnapshot]] = []
        self.snapshot = snapshot
        self.fail = fail

    async def load(self, service_key: str) -> FilterSnapshot | None:
        return self.snapshot

    async def save(self, service_key: str, snapshot: FilterSnapshot) -> None:
        if self.fail:
            raise RuntimeError("disk full")
        self.saved.append((service_key, snapshot))


def test_equal_writes_short_circuit() -> None:
    state = FilterState(FilterSnapshot(provider_ids=[8, 9]))
    changes: list[str] = []
    state.on_change(changes.append)

    assert state.set_media_kind(MediaKind.MOVIE) is False
    assert state.set_provider_ids([9, 8]) is False
    assert state.remove_keyword(42) is False
    assert changes == []


def test_setters_report_changed_field() -> None:
    state = FilterState()
    changes: list[str] = []
    state.on_change(changes.append)

    assert state.set_media_kind(MediaKind.TV)
    assert state.toggle_provider(8)
    assert state.toggle_genre(18)
    assert state.add_keyword(5)
    assert state.toggle_provider(8)

    assert changes == [MEDIA_KIND, PROVIDERS, GENRES, KEYWORDS, PROVIDERS]
    assert state.provider_ids == frozenset()
    assert state.genre_ids == frozenset({18})
    assert state.keyword_ids == frozenset({5})


@pytest.mark.anyio("asyncio")
async def test_rapid_changes_coalesce_into_one_save() -> None:
    store = MemoryStore()
    state = FilterState(store=store, service_key="example.org", persist_delay=0.02)

    state.toggle_provider(1)
    state.toggle_provider(2)
    state.set_media_kind(MediaKind.TV)
    await asyncio.sleep(0.06)

    assert len(store.saved) == 1
    key, snapshot = store.saved[0]
    assert key == "example.org"
    assert snapshot == FilterSnapshot(media_kind=MediaKind.TV, provider_ids=[1, 2])


@pytest.mark.anyio("asyncio")
async def test_flush_persists_pending_change_immediately() -> None:
    store = MemoryStore()
    state = FilterState(store=store, persist_delay=60)

    state.add_keyword(7)
    assert state.has_pending_save
    await state.flush()

    assert [snapshot.keyword_ids for _, snapshot in store.saved] == [[7]]
    assert not state.has_pending_save


@pytest.mark.anyio("asyncio")
async def test_persist_failures_are_logged(caplog) -> None:
    state = FilterState(store=MemoryStore(fail=True), persist_delay=0)

    state.toggle_genre(3)
    await state.flush()
    await asyncio.sleep(0.01)

    assert "Failed to persist filters" in caplog.text


@pytest.mark.anyio("asyncio")
async def test_load_uses_stored_snapshot_or_defaults() -> None:
    stored = FilterSnapshot(media_kind=MediaKind.TV, genre_ids=[35], keyword_ids=[5])

    restored = await FilterState.load(MemoryStore(stored), "example.org")
    fresh = await FilterState.load(MemoryStore(), "example.org")

    assert restored.snapshot() == stored
    assert fresh.snapshot() == FilterSnapshot()
