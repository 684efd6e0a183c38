"""Pydantic models and value types shared across the coordination core."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class MediaKind(str, Enum):
    """Subset of TMDB media types recognised by the server."""

    MOVIE = "movie"
    TV = "tv"
    PERSON = "person"
    COLLECTION = "collection"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "MediaKind":
        return cls.UNKNOWN

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_discoverable(self) -> bool:
        return self in (MediaKind.MOVIE, MediaKind.TV)


_DISPLAY_NAMES = {
    MediaKind.MOVIE: "Movies",
    MediaKind.TV: "TV Shows",
    MediaKind.PERSON: "People",
    MediaKind.COLLECTION: "Collections",
    MediaKind.UNKNOWN: "Other",
}


class MediaListItem(BaseModel):
    """Normalised projection used by every list the UI renders."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    poster_ref: str | None = None
    media_kind: MediaKind

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "posterRef": self.poster_ref,
            "mediaKind": self.media_kind.value,
        }


class RawMediaResult(BaseModel):
    """One entry of a server result page before normalisation."""

    id: int
    media_type: MediaKind | None = Field(
        default=None, validation_alias=AliasChoices("mediaType", "media_type")
    )
    title: str | None = None
    name: str | None = None
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("posterPath", "poster_path")
    )

    def to_list_item(self, default_kind: MediaKind | None = None) -> MediaListItem | None:
        """Return the display item, or ``None`` for kinds lists cannot show."""

        kind = self.media_type or default_kind
        if kind is None or not kind.is_discoverable:
            return None
        return MediaListItem(
            id=self.id,
            title=self.title or self.name or "Untitled",
            poster_ref=self.poster_path,
            media_kind=kind,
        )


class PagedResults(BaseModel):
    """Pagination envelope returned by search, discover and recommendations."""

    page: int = 1
    total_pages: int = Field(
        default=1, validation_alias=AliasChoices("totalPages", "total_pages")
    )
    results: list[MediaListItem] = Field(default_factory=list)

    @classmethod
    def from_payload(
        cls, data: dict[str, Any], *, default_kind: MediaKind | None = None
    ) -> "PagedResults":
        raw_results = data.get("results") or []
        items: list[MediaListItem] = []
        for entry in raw_results:
            if not isinstance(entry, dict):
                continue
            item = RawMediaResult.model_validate(entry).to_list_item(default_kind)
            if item is not None:
                items.append(item)
        envelope = {key: value for key, value in data.items() if key != "results"}
        return cls.model_validate({**envelope, "results": items})


class Keyword(BaseModel):
    """A TMDB keyword that can narrow discover results."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


class WatchProvider(BaseModel):
    """A streaming provider the discover endpoints can filter by."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    logo_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("logoPath", "logo_path", "logo_ref")
    )
    display_priority: int | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "displayPriority", "display_priority", "displayPriorities"
        ),
    )

    @field_validator("display_priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: object) -> object:
        if isinstance(value, dict):
            return None
        return value

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "logoRef": self.logo_ref}


class AuthStatus(str, Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True, slots=True)
class AuthState:
    """Single source of truth for whether the current session is usable."""

    status: AuthStatus
    expiry: datetime | None = None

    @classmethod
    def unknown(cls) -> "AuthState":
        return cls(AuthStatus.UNKNOWN)

    @classmethod
    def authenticated(cls, expiry: datetime | None = None) -> "AuthState":
        return cls(AuthStatus.AUTHENTICATED, expiry)

    @classmethod
    def unauthenticated(cls) -> "AuthState":
        return cls(AuthStatus.UNAUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    @property
    def is_unknown(self) -> bool:
        return self.status is AuthStatus.UNKNOWN

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "expiry": self.expiry.isoformat() if self.expiry else None,
        }


class FilterSnapshot(BaseModel):
    """Serialisable view of the user's discover facets."""

    media_kind: MediaKind = MediaKind.MOVIE
    provider_ids: list[int] = Field(default_factory=list)
    genre_ids: list[int] = Field(default_factory=list)
    keyword_ids: list[int] = Field(default_factory=list)

    @field_validator("provider_ids", "genre_ids", "keyword_ids", mode="before")
    @classmethod
    def _normalise_ids(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            return sorted({int(entry) for entry in value})
        return value
