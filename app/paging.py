"""Page counters and admission control for infinite-scroll lists."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


class _Identified(Protocol):
    id: int


@dataclass
class PageCursor:
    """Tracks the next page to request and whether a fetch is in flight.

    ``begin_loading`` is the only gate that admits a fetch for the owning
    list, so at most one request per list is outstanding at a time. Every
    admitted fetch must finish with exactly one ``end_loading`` (success) or
    ``cancel_loading`` (error or cancellation).
    """

    page: int = 1
    total_pages: int = 1
    is_loading: bool = False

    def reset(self) -> None:
        """Start over for a brand-new query context."""

        self.page = 1
        self.total_pages = 1
        self.is_loading = False

    def begin_loading(self) -> bool:
        """Admit the next fetch, or return ``False`` when busy or exhausted."""

        if self.is_loading or self.page > self.total_pages:
            return False
        self.is_loading = True
        return True

    def end_loading(self, total_pages: int) -> None:
        """Record the server's page count and move on to the next page."""

        # The page just fetched exists, whatever the server claims.
        self.total_pages = max(int(total_pages), self.page, 1)
        self.page += 1
        self.is_loading = False

    def cancel_loading(self) -> None:
        """Release the gate without advancing so a retry reuses the page."""

        self.is_loading = False

    @property
    def has_more(self) -> bool:
        return self.page <= self.total_pages


def should_prefetch(
    items: Sequence[_Identified], current_id: int, threshold: int
) -> bool:
    """Return whether ``current_id`` sits within ``threshold`` items of the end."""

    threshold_index = len(items) - max(threshold, 0)
    for index, item in enumerate(items):
        if item.id == current_id:
            return index >= threshold_index
    return False
