"""Tests for the Overseerr HTTP client."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.errors import AuthorizationFailure, DecodingFailure, TransportFailure
from app.models import MediaKind
from app.services.overseerr import OverseerrClient

BASE_URL = "https://requests.example.org/api/v1"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {
        "OVERSEERR_URL": "https://requests.example.org",
        "REQUEST_RETRY_LIMIT": 0,
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def build_client(handler, **overrides: Any) -> OverseerrClient:
    http_client = httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(handler)
    )
    return OverseerrClient(build_settings(**overrides), http_client)


@pytest.mark.anyio("asyncio")
async def test_search_keeps_only_movies_and_tv() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "page": 1,
                "totalPages": 3,
                "results": [
                    {"id": 1, "mediaType": "movie", "title": "Heat", "posterPath": "/heat.jpg"},
                    {"id": 2, "mediaType": "tv", "name": "The Wire"},
                    {"id": 3, "mediaType": "person", "name": "Al Pacino"},
                    {"id": 4, "mediaType": "collection", "name": "Ocean's"},
                ],
            },
        )

    client = build_client(handler)
    page = await client.search("heat", 1)

    assert requests[0].url.path == "/api/v1/search"
    assert requests[0].url.params["query"] == "heat"
    assert page.total_pages == 3
    assert [(item.id, item.title, item.media_kind) for item in page.results] == [
        (1, "Heat", MediaKind.MOVIE),
        (2, "The Wire", MediaKind.TV),
    ]
    assert page.results[0].poster_ref == "/heat.jpg"


@pytest.mark.anyio("asyncio")
async def test_discover_serialises_filters() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"page": 1, "totalPages": 1, "results": [{"id": 9, "name": "Show"}]})

    client = build_client(handler, WATCH_REGION="gb")
    page = await client.discover(
        MediaKind.TV, provider_ids=[337, 8], genre_ids=[35, 18], keyword_ids=[5], page=2
    )

    params = requests[0].url.params
    assert requests[0].url.path == "/api/v1/discover/tv"
    assert params["watchProviders"] == "8|337"
    assert params["watchRegion"] == "GB"
    assert params["genre"] == "18,35"
    assert params["keywords"] == "5"
    assert params["page"] == "2"
    assert page.results[0].media_kind is MediaKind.TV


@pytest.mark.anyio("asyncio")
async def test_discover_without_providers_omits_region() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"page": 1, "totalPages": 1, "results": []})

    client = build_client(handler)
    await client.discover(MediaKind.MOVIE, keyword_ids=[5])

    assert requests[0].url.path == "/api/v1/discover/movies"
    assert "watchRegion" not in requests[0].url.params
    assert "watchProviders" not in requests[0].url.params


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_statuses_raise_authorization_failure(status: int) -> None:
    client = build_client(lambda request: httpx.Response(status, json={}))

    with pytest.raises(AuthorizationFailure) as excinfo:
        await client.recommendations(10, MediaKind.MOVIE)

    assert excinfo.value.status_code == status


@pytest.mark.anyio("asyncio")
async def test_server_errors_raise_transport_failure() -> None:
    client = build_client(lambda request: httpx.Response(500, text="oops"))

    with pytest.raises(TransportFailure) as excinfo:
        await client.trending()

    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "Internal Server Error"


@pytest.mark.anyio("asyncio")
async def test_malformed_payload_raises_decoding_failure() -> None:
    client = build_client(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(DecodingFailure):
        await client.trending()


@pytest.mark.anyio("asyncio")
async def test_network_errors_retry_then_fail() -> None:
    attempts: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = build_client(handler, REQUEST_RETRY_LIMIT=1)
    with pytest.raises(TransportFailure):
        await client.search("heat", 1)

    assert len(attempts) == 2


@pytest.mark.anyio("asyncio")
async def test_transient_server_error_recovers() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"page": 1, "totalPages": 1, "results": []})

    client = build_client(handler, REQUEST_RETRY_LIMIT=1)
    page = await client.trending()

    assert page.results == []
    assert len(calls) == 2


@pytest.mark.anyio("asyncio")
async def test_is_authenticated_maps_failures_to_false() -> None:
    ok = build_client(lambda request: httpx.Response(200, json={"id": 1}))
    rejected = build_client(lambda request: httpx.Response(401, json={}))

    assert await ok.is_authenticated() is True
    assert await rejected.is_authenticated() is False


@pytest.mark.anyio("asyncio")
async def test_keyword_search_and_watch_providers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/search/keyword"):
            return httpx.Response(200, json={"results": [{"id": 5, "name": "heist"}]})
        return httpx.Response(
            200,
            json=[{"id": 8, "name": "Netflix", "logoPath": "/n.png", "displayPriority": 1}],
        )

    client = build_client(handler)

    assert [keyword.name for keyword in await client.keyword_search("heist")] == ["heist"]
    assert await client.keyword_search("") == []
    providers = await client.watch_providers(MediaKind.MOVIE)
    assert providers[0].logo_ref == "/n.png"
    assert providers[0].display_priority == 1


@pytest.mark.anyio("asyncio")
async def test_plex_login_and_logout_manage_cookies() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/auth/plex"):
            return httpx.Response(
                200,
                json={"id": 1},
                headers={"set-cookie": "connect.sid=abc; Path=/"},
            )
        return httpx.Response(200, json={})

    client = build_client(handler)
    await client.login_with_plex_token("plex-token")

    assert requests[0].method == "POST"
    assert json.loads(requests[0].content) == {"authToken": "plex-token"}
    assert client.has_session_cookie("connect.sid") is True

    await client.logout()

    assert requests[-1].url.path == "/api/v1/auth/logout"
    assert client.has_session_cookie("connect.sid") is False
