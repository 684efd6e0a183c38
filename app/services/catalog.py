"""Capability interface the coordination core needs from a catalog server."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..models import Keyword, MediaKind, PagedResults, WatchProvider


@runtime_checkable
class CatalogClient(Protocol):
    """Operations the core depends on.

    Implementations raise :class:`~app.errors.AuthorizationFailure` when the
    server rejects the session and :class:`~app.errors.TransportFailure` for
    everything else.
    """

    async def is_authenticated(self) -> bool: ...

    def has_session_cookie(self, name: str) -> bool: ...

    async def search(self, query: str, page: int) -> PagedResults: ...

    async def discover(
        self,
        media_kind: MediaKind,
        *,
        provider_ids: Sequence[int] = (),
        genre_ids: Sequence[int] = (),
        keyword_ids: Sequence[int] = (),
        page: int = 1,
    ) -> PagedResults: ...

    async def keyword_search(self, query: str) -> list[Keyword]: ...

    async def recommendations(
        self, base_id: int, media_kind: MediaKind, page: int = 1
    ) -> PagedResults: ...

    async def trending(self, page: int = 1) -> PagedResults: ...

    async def watch_providers(self, media_kind: MediaKind) -> list[WatchProvider]: ...
