"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.models import MediaKind, MediaListItem, PagedResults  # noqa: E402


def make_page(
    *ids: int,
    kind: MediaKind = MediaKind.MOVIE,
    page: int = 1,
    total_pages: int = 1,
) -> PagedResults:
    """Build a result page holding one item per id."""

    return PagedResults(
        page=page,
        total_pages=total_pages,
        results=[
            MediaListItem(id=item_id, title=f"Title {item_id}", media_kind=kind)
            for item_id in ids
        ],
    )


class FakeCatalogClient:
    """In-memory catalog client recording every call.

    Each operation delegates to an overridable handler; handlers may be
    plain functions or coroutines and may raise to simulate failures.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.session_cookie = False
        self.probe_delay = 0.0
        self.on_is_authenticated: Callable[[], Any] = lambda: True
        self.on_search: Callable[..., Any] = lambda query, page: make_page()
        self.on_discover: Callable[..., Any] = lambda kind, **kwargs: make_page(kind=kind)
        self.on_keyword_search: Callable[..., Any] = lambda query: []
        self.on_recommendations: Callable[..., Any] = (
            lambda base_id, kind, page: make_page(kind=kind)
        )
        self.on_trending: Callable[..., Any] = lambda page: make_page()
        self.on_watch_providers: Callable[..., Any] = lambda kind: []

    def named(self, name: str) -> list[dict[str, Any]]:
        return [arguments for call, arguments in self.calls if call == name]

    async def _invoke(self, handler: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        result = handler(*args, **kwargs)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def is_authenticated(self) -> bool:
        self.calls.append(("is_authenticated", {}))
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        return await self._invoke(self.on_is_authenticated)

    def has_session_cookie(self, name: str) -> bool:
        return self.session_cookie

    async def search(self, query: str, page: int) -> PagedResults:
        self.calls.append(("search", {"query": query, "page": page}))
        return await self._invoke(self.on_search, query, page)

    async def discover(
        self,
        media_kind: MediaKind,
        *,
        provider_ids=(),
        genre_ids=(),
        keyword_ids=(),
        page: int = 1,
    ) -> PagedResults:
        arguments = {
            "media_kind": media_kind,
            "provider_ids": list(provider_ids),
            "genre_ids": list(genre_ids),
            "keyword_ids": list(keyword_ids),
            "page": page,
        }
        self.calls.append(("discover", arguments))
        return await self._invoke(
            self.on_discover,
            media_kind,
            provider_ids=list(provider_ids),
            genre_ids=list(genre_ids),
            keyword_ids=list(keyword_ids),
            page=page,
        )

    async def keyword_search(self, query: str):
        self.calls.append(("keyword_search", {"query": query}))
        return await self._invoke(self.on_keyword_search, query)

    async def recommendations(self, base_id: int, media_kind: MediaKind, page: int = 1):
        self.calls.append(
            ("recommendations", {"base_id": base_id, "media_kind": media_kind, "page": page})
        )
        return await self._invoke(self.on_recommendations, base_id, media_kind, page)

    async def trending(self, page: int = 1) -> PagedResults:
        self.calls.append(("trending", {"page": page}))
        return await self._invoke(self.on_trending, page)

    async def watch_providers(self, media_kind: MediaKind):
        self.calls.append(("watch_providers", {"media_kind": media_kind}))
        return await self._invoke(self.on_watch_providers, media_kind)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def fake_client() -> FakeCatalogClient:
    return FakeCatalogClient()
