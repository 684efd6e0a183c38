"""Paginated feed of trending movies and TV shows."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import AuthorizationFailure, CatalogError
from ..models import MediaListItem
from ..paging import PageCursor, should_prefetch
from .catalog import CatalogClient
from .session import SessionCoordinator

logger = logging.getLogger(__name__)


class TrendingFeed:
    """Infinite-scroll list of what is trending on the server."""

    def __init__(
        self,
        client: CatalogClient,
        coordinator: SessionCoordinator,
        *,
        prefetch_threshold: int = 5,
    ) -> None:
        self._client = client
        self._coordinator = coordinator
        self._prefetch_threshold = prefetch_threshold
        self._cursor = PageCursor()
        self._recoveries: set[asyncio.Task[Any]] = set()
        self._generation = 0
        self.items: list[MediaListItem] = []
        self.error: str | None = None

    @property
    def is_loading(self) -> bool:
        return self._cursor.is_loading

    @property
    def cursor(self) -> PageCursor:
        return self._cursor

    async def bootstrap(self) -> None:
        """Drop everything and load the first page again."""

        self._generation += 1
        self.error = None
        self.items = []
        self._cursor.reset()
        await self._fetch_next_page()

    async def load_more(self, current_item_id: int) -> bool:
        if not should_prefetch(self.items, current_item_id, self._prefetch_threshold):
            return False
        return await self._fetch_next_page()

    async def wait_for_idle(self) -> None:
        pending = [task for task in self._recoveries if not task.done()]
        if pending:
            await asyncio.wait(pending)

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.to_payload() for item in self.items],
            "isLoading": self.is_loading,
            "error": self.error,
            "page": self._cursor.page,
            "totalPages": self._cursor.total_pages,
        }

    async def _fetch_next_page(self) -> bool:
        if not self._cursor.begin_loading():
            return False
        page = self._cursor.page
        generation = self._generation
        try:
            response = await self._client.trending(page)
        except AuthorizationFailure:
            if generation == self._generation:
                self._cursor.cancel_loading()
            logger.info("Trending fetch rejected, re-validating session")
            task = asyncio.get_running_loop().create_task(
                self._coordinator.recover_from_auth_failure()
            )
            self._recoveries.add(task)
            task.add_done_callback(self._recoveries.discard)
            return False
        except CatalogError as exc:
            if generation != self._generation:
                return False
            self._cursor.cancel_loading()
            logger.warning("Trending fetch failed: %s", exc)
            if not self.items:
                self.error = f"Failed to load trending items. {exc}"
            return False
        except BaseException:
            if generation == self._generation:
                self._cursor.cancel_loading()
            raise

        if generation != self._generation:
            logger.debug("Discarding stale trending page %s", page)
            return False
        self.items = [*self.items, *response.results]
        self._cursor.end_loading(response.total_pages)
        if self._cursor.page == 2:
            self.error = None
        return True
