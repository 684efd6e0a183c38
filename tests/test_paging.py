"""Admission control and prefetch threshold behaviour."""

from __future__ import annotations

from app.models import MediaKind, MediaListItem
from app.paging import PageCursor, should_prefetch


def _items(count: int) -> list[MediaListItem]:
    return [
        MediaListItem(id=index, title=f"Item {index}", media_kind=MediaKind.MOVIE)
        for index in range(1, count + 1)
    ]


def test_second_begin_without_end_is_rejected() -> None:
    cursor = PageCursor()

    assert cursor.begin_loading() is True
    assert cursor.begin_loading() is False
    assert cursor.is_loading is True


def test_cancel_keeps_page_and_releases_gate() -> None:
    cursor = PageCursor()

    assert cursor.begin_loading()
    cursor.cancel_loading()

    assert cursor.page == 1
    assert cursor.is_loading is False
    assert cursor.begin_loading() is True


def test_end_loading_advances_until_exhausted() -> None:
    cursor = PageCursor()

    assert cursor.begin_loading()
    cursor.end_loading(2)
    assert (cursor.page, cursor.total_pages, cursor.is_loading) == (2, 2, False)

    assert cursor.begin_loading()
    cursor.end_loading(2)
    assert cursor.page == 3
    assert cursor.has_more is False
    assert cursor.begin_loading() is False


def test_end_loading_never_lets_page_overrun_total() -> None:
    """A server reporting zero pages still counts the page just fetched."""

    cursor = PageCursor()
    assert cursor.begin_loading()
    cursor.end_loading(0)

    assert cursor.total_pages == 1
    assert cursor.page <= cursor.total_pages + 1


def test_reset_starts_over() -> None:
    cursor = PageCursor(page=4, total_pages=9, is_loading=True)

    cursor.reset()

    assert (cursor.page, cursor.total_pages, cursor.is_loading) == (1, 1, False)


def test_should_prefetch_near_the_end_only() -> None:
    items = _items(20)

    assert should_prefetch(items, 15, 5) is False
    assert should_prefetch(items, 16, 5) is True
    assert should_prefetch(items, 20, 5) is True


def test_should_prefetch_ignores_unknown_items() -> None:
    assert should_prefetch(_items(3), 99, 5) is False


def test_short_lists_always_prefetch() -> None:
    assert should_prefetch(_items(3), 1, 5) is True
