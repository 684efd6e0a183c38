"""Entry point for the FastAPI surface in front of the discovery core."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from .config import Settings, settings
from .database import Database
from .errors import AuthorizationFailure, CatalogError
from .models import AuthState, Keyword, MediaKind
from .services.discovery import DiscoveryQueryPipeline
from .services.filter_store import FilterStore
from .services.filters import FilterState
from .services.overseerr import OverseerrClient
from .services.session import SessionCoordinator
from .services.trending import TrendingFeed

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI

BodyT = TypeVar("BodyT", bound=BaseModel)


@dataclass
class Services:
    """Everything the routes need, built once per process."""

    settings: Settings
    client: OverseerrClient
    coordinator: SessionCoordinator
    filters: FilterState
    pipeline: DiscoveryQueryPipeline
    trending: TrendingFeed


class SearchRequest(BaseModel):
    query: str = ""


class MediaKindRequest(BaseModel):
    media_kind: MediaKind = Field(validation_alias=AliasChoices("mediaKind", "media_kind"))

    @field_validator("media_kind")
    @classmethod
    def _require_discoverable(cls, value: MediaKind) -> MediaKind:
        if not value.is_discoverable:
            raise ValueError("mediaKind must be 'movie' or 'tv'")
        return value


class PlexLoginRequest(BaseModel):
    auth_token: str = Field(
        min_length=1, validation_alias=AliasChoices("authToken", "auth_token")
    )


class LoadMoreRequest(BaseModel):
    item_id: int = Field(validation_alias=AliasChoices("itemId", "item_id"))


async def build_services(stack: AsyncExitStack, config: Settings) -> Services:
    """Wire the client, persistence and coordination core together.

    Cleanups are registered on ``stack`` so closing it tears everything
    down in reverse order of construction.
    """

    if config.overseerr_api_url is None:
        logger.warning("OVERSEERR_URL is not configured; catalog requests will fail")
    http_client = await stack.enter_async_context(
        httpx.AsyncClient(
            base_url=config.overseerr_api_url or "",
            timeout=httpx.Timeout(config.request_timeout_seconds, connect=10.0),
            follow_redirects=True,
        )
    )
    database = Database(config.database_url)
    await database.create_all()
    stack.push_async_callback(database.dispose)

    store = FilterStore(database.session_factory)
    filters = await FilterState.load(
        store,
        config.service_key,
        persist_delay=config.filter_persist_delay_seconds,
    )
    stack.push_async_callback(filters.aclose)

    client = OverseerrClient(config, http_client)
    coordinator = SessionCoordinator.from_settings(config)
    stack.push_async_callback(coordinator.aclose)

    pipeline = DiscoveryQueryPipeline(
        client,
        coordinator,
        filters,
        search_debounce=config.search_debounce_seconds,
        prefetch_threshold=config.prefetch_threshold,
    )
    stack.push_async_callback(pipeline.aclose)
    trending = TrendingFeed(
        client, coordinator, prefetch_threshold=config.prefetch_threshold
    )

    await coordinator.configure(client if config.overseerr_api_url else None)
    return Services(
        settings=config,
        client=client,
        coordinator=coordinator,
        filters=filters,
        pipeline=pipeline,
        trending=trending,
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    services = await build_services(exit_stack, settings)
    fastapi_app.state.services = services
    logger.info("%s ready for %s", settings.app_name, settings.service_key)
    try:
        yield
    finally:
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Session-aware discovery and search for Overseerr servers",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(app: FastAPI) -> Services:
    services = getattr(app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


async def _read_body(request: Request, model: type[BodyT]) -> BodyT:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=exc.errors(include_url=False, include_context=False)
        ) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # -- session ------------------------------------------------------------

    @fastapi_app.get("/api/session")
    async def session_state() -> dict[str, Any]:
        services = get_services(fastapi_app)
        return services.coordinator.state.to_payload()

    @fastapi_app.post("/api/session/probe")
    async def probe_session() -> dict[str, Any]:
        services = get_services(fastapi_app)
        state = await services.coordinator.ensure_authenticated()
        return state.to_payload()

    @fastapi_app.post("/api/session/plex")
    async def plex_login(request: Request) -> dict[str, Any]:
        services = get_services(fastapi_app)
        body = await _read_body(request, PlexLoginRequest)
        try:
            await services.client.login_with_plex_token(body.auth_token)
        except AuthorizationFailure as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except CatalogError as exc:
            logger.warning("Plex login failed: %s", exc)
            raise HTTPException(
                status_code=502, detail=f"Plex login failed. Please try again. ({exc})"
            ) from exc
        state = await services.coordinator.probe_session()
        return state.to_payload()

    @fastapi_app.post("/api/session/logout")
    async def logout() -> dict[str, Any]:
        services = get_services(fastapi_app)
        await services.client.logout()
        await services.coordinator.set_state(AuthState.unknown())
        state = await services.coordinator.probe_session()
        return state.to_payload()

    # -- discover -----------------------------------------------------------

    @fastapi_app.get("/api/discover")
    async def discover_state() -> dict[str, Any]:
        return get_services(fastapi_app).pipeline.to_payload()

    @fastapi_app.put("/api/discover/search")
    async def set_search(request: Request) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        body = await _read_body(request, SearchRequest)
        pipeline.set_search_text(body.query)
        return pipeline.to_payload()

    @fastapi_app.put("/api/discover/media")
    async def set_media(request: Request) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        body = await _read_body(request, MediaKindRequest)
        pipeline.set_media_kind(body.media_kind)
        return pipeline.to_payload()

    @fastapi_app.post("/api/discover/providers/{provider_id}/toggle")
    async def toggle_provider(provider_id: int) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        pipeline.toggle_provider(provider_id)
        return pipeline.to_payload()

    @fastapi_app.post("/api/discover/genres/{genre_id}/toggle")
    async def toggle_genre(genre_id: int) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        pipeline.toggle_genre(genre_id)
        return pipeline.to_payload()

    @fastapi_app.post("/api/discover/keywords")
    async def activate_keyword(request: Request) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        keyword = await _read_body(request, Keyword)
        await pipeline.activate(keyword)
        return pipeline.to_payload()

    @fastapi_app.delete("/api/discover/keywords/{keyword_id}")
    async def remove_keyword(keyword_id: int) -> dict[str, Any]:
        pipeline = get_services(fastapi_app).pipeline
        await pipeline.remove(keyword_id)
        return pipeline.to_payload()

    @fastapi_app.post("/api/discover/{section}/more")
    async def load_more(section: str, request: Request) -> JSONResponse:
        pipeline = get_services(fastapi_app).pipeline
        try:
            state = pipeline.section(section)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown section: {section}") from exc
        body = await _read_body(request, LoadMoreRequest)
        outcome = await pipeline.load_more(section, body.item_id)
        return JSONResponse({"outcome": outcome.value, section: state.to_payload()})

    # -- trending -----------------------------------------------------------

    @fastapi_app.get("/api/trending")
    async def trending() -> dict[str, Any]:
        feed = get_services(fastapi_app).trending
        if not feed.items and not feed.is_loading:
            await feed.bootstrap()
        return feed.to_payload()

    @fastapi_app.post("/api/trending/more")
    async def trending_more(request: Request) -> dict[str, Any]:
        feed = get_services(fastapi_app).trending
        body = await _read_body(request, LoadMoreRequest)
        await feed.load_more(body.item_id)
        return feed.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
