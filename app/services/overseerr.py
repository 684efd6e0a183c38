"""Client for the Overseerr-compatible catalog API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import AuthorizationFailure, CatalogError, DecodingFailure, TransportFailure
from ..models import Keyword, MediaKind, PagedResults, WatchProvider
from ..utils import join_ids

logger = logging.getLogger(__name__)

_AUTH_STATUS_CODES = {401, 403}


class OverseerrClient:
    """Thin wrapper around the Overseerr HTTP API.

    The session cookie lives in the ``httpx.AsyncClient`` cookie jar, so
    every request made through this client shares the same login.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.request_retry_limit

    # -- session ------------------------------------------------------------

    async def is_authenticated(self) -> bool:
        """Return whether ``/auth/me`` accepts the current session."""

        try:
            response = await self._request("GET", "/auth/me")
        except CatalogError as exc:
            logger.info("Session probe rejected: %s", exc)
            return False
        return response.status_code == 200

    def has_session_cookie(self, name: str) -> bool:
        return any(cookie.name == name for cookie in self._client.cookies.jar)

    async def current_user(self) -> dict[str, Any]:
        data = await self._get_json("/auth/me")
        if not isinstance(data, dict):
            raise DecodingFailure()
        return data

    async def login_with_plex_token(self, token: str) -> None:
        """Exchange a Plex auth token for a server session cookie."""

        if not token.strip():
            raise ValueError("A Plex token is required")
        await self._request("POST", "/auth/plex", json={"authToken": token})

    async def logout(self) -> None:
        """End the server session and forget every stored cookie."""

        try:
            await self._request("POST", "/auth/logout")
        except CatalogError as exc:
            logger.info("Logout request failed, clearing cookies anyway: %s", exc)
        finally:
            self._client.cookies.clear()

    # -- catalog ------------------------------------------------------------

    async def search(self, query: str, page: int) -> PagedResults:
        data = await self._get_json("/search", params={"query": query, "page": page})
        # Search mixes people and collections in with titles; lists only show titles.
        return self._parse_page(data, default_kind=None)

    async def discover(
        self,
        media_kind: MediaKind,
        *,
        provider_ids: Sequence[int] = (),
        genre_ids: Sequence[int] = (),
        keyword_ids: Sequence[int] = (),
        page: int = 1,
    ) -> PagedResults:
        if not media_kind.is_discoverable:
            raise ValueError(f"Cannot discover {media_kind.display_name}")
        segment = "movies" if media_kind is MediaKind.MOVIE else "tv"
        params: dict[str, Any] = {"page": page}
        if provider_ids:
            params["watchProviders"] = join_ids(provider_ids, "|")
            params["watchRegion"] = self._settings.watch_region
        if genre_ids:
            params["genre"] = join_ids(genre_ids, ",")
        if keyword_ids:
            params["keywords"] = join_ids(keyword_ids, ",")
        data = await self._get_json(f"/discover/{segment}", params=params)
        return self._parse_page(data, default_kind=media_kind)

    async def keyword_search(self, query: str) -> list[Keyword]:
        if not query:
            return []
        data = await self._get_json("/search/keyword", params={"query": query})
        if not isinstance(data, dict):
            raise DecodingFailure()
        keywords: list[Keyword] = []
        try:
            for entry in data.get("results") or []:
                keywords.append(Keyword.model_validate(entry))
        except ValidationError as exc:
            raise DecodingFailure() from exc
        return keywords

    async def recommendations(
        self, base_id: int, media_kind: MediaKind, page: int = 1
    ) -> PagedResults:
        if not media_kind.is_discoverable:
            raise ValueError(f"No recommendations for {media_kind.display_name}")
        data = await self._get_json(
            f"/{media_kind.value}/{base_id}/recommendations", params={"page": page}
        )
        return self._parse_page(data, default_kind=media_kind)

    async def trending(self, page: int = 1) -> PagedResults:
        data = await self._get_json("/discover/trending", params={"page": page})
        return self._parse_page(data, default_kind=None)

    async def watch_providers(self, media_kind: MediaKind) -> list[WatchProvider]:
        segment = "movies" if media_kind is MediaKind.MOVIE else "tv"
        data = await self._get_json(
            f"/watchproviders/{segment}",
            params={"watchRegion": self._settings.watch_region},
        )
        if not isinstance(data, list):
            raise DecodingFailure()
        try:
            return [WatchProvider.model_validate(entry) for entry in data]
        except ValidationError as exc:
            raise DecodingFailure() from exc

    # -- transport ----------------------------------------------------------

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON response from %s", path)
            raise DecodingFailure() from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Send a request, retrying idempotent calls on transient failures."""

        retryable = method == "GET"
        attempt = 0
        while True:
            try:
                response = await self._client.request(method, path, params=params, json=json)
            except httpx.HTTPError as exc:
                attempt += 1
                if retryable and attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to the server (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise TransportFailure(str(exc) or exc.__class__.__name__) from exc

            if response.status_code in _AUTH_STATUS_CODES:
                raise AuthorizationFailure(response.status_code)
            if 500 <= response.status_code < 600 and retryable:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Server error %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            if not 200 <= response.status_code < 300:
                logger.warning(
                    "%s %s failed with %s: %s",
                    method,
                    path,
                    response.status_code,
                    response.text,
                )
                raise TransportFailure(
                    response.reason_phrase or f"HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            return response

    @staticmethod
    def _parse_page(data: Any, *, default_kind: MediaKind | None) -> PagedResults:
        if not isinstance(data, dict):
            raise DecodingFailure()
        try:
            return PagedResults.from_payload(data, default_kind=default_kind)
        except ValidationError as exc:
            raise DecodingFailure() from exc
