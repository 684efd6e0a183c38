"""Utility helpers for the Marquee service."""

from __future__ import annotations

from typing import Callable, Iterable, TypeVar

T = TypeVar("T")


def name_sort_key(name: str | None) -> str:
    """Return a case-insensitive ordering key for display names."""

    return (name or "").strip().casefold()


def sorted_by_name(entries: Iterable[T], *, key: Callable[[T], str | None]) -> list[T]:
    """Sort ``entries`` by a case-insensitive name, keeping ties stable."""

    return sorted(entries, key=lambda entry: name_sort_key(key(entry)))


def unique_by_id(entries: Iterable[T], *, key: Callable[[T], int]) -> list[T]:
    """Drop later entries that repeat an identifier already seen."""

    seen: set[int] = set()
    unique: list[T] = []
    for entry in entries:
        identifier = key(entry)
        if identifier in seen:
            continue
        seen.add(identifier)
        unique.append(entry)
    return unique


def join_ids(ids: Iterable[int], separator: str) -> str:
    """Serialise an id collection into a deterministic query value."""

    return separator.join(str(value) for value in sorted(set(ids)))


def normalize_base_url(value: str | None) -> str | None:
    """Strip whitespace, trailing slashes and query strings from a server URL."""

    if not value:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    normalized = normalized.split("?", 1)[0].split("#", 1)[0]
    normalized = normalized.rstrip("/")
    return normalized or None
