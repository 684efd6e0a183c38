"""Debounced search, facet discovery and paginated recommendation lists."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Generic, Iterable, TypeVar

from ..debounce import Debouncer
from ..errors import AuthorizationFailure, CatalogError
from ..models import (
    AuthState,
    AuthStatus,
    Keyword,
    MediaKind,
    MediaListItem,
    PagedResults,
    WatchProvider,
)
from ..paging import PageCursor, should_prefetch
from ..utils import name_sort_key, sorted_by_name, unique_by_id
from .catalog import CatalogClient
from .filters import KEYWORDS, FilterState
from .session import SessionCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESULTS = "results"
MOVIE_RECS = "movie_recs"
TV_RECS = "tv_recs"
KEYWORD_SUGGESTIONS = "keyword_suggestions"
PAGED_SECTIONS = (RESULTS, MOVIE_RECS, TV_RECS)

DISCOVER_MODE = "discover"
SEARCH_MODE = "search"


class PageOutcome(str, Enum):
    """How a single page request ended."""

    LOADED = "loaded"
    SKIPPED = "skipped"
    STALE = "stale"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"


@dataclass(eq=False)
class ListState(Generic[T]):
    """Items, cursor and scoped error of one list the UI renders.

    ``generation`` changes whenever the list is cleared so responses
    requested for the previous contents can be recognised and dropped.
    """

    name: str
    items: list[T] = field(default_factory=list)
    error: str | None = None
    cursor: PageCursor = field(default_factory=PageCursor)
    generation: int = 0

    @property
    def is_loading(self) -> bool:
        return self.cursor.is_loading

    def clear(self) -> None:
        self.items = []
        self.error = None
        self.cursor.reset()
        self.generation += 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.to_payload() for item in self.items],
            "isLoading": self.is_loading,
            "error": self.error,
            "page": self.cursor.page,
            "totalPages": self.cursor.total_pages,
        }


@dataclass(frozen=True)
class QueryContext:
    """Inputs that determine what the primary list should show.

    The pipeline stamps the primary list with the context of its first
    page and requests every later page against that stamp, so scrolling
    never mixes in pages for text or facets the list was not loaded for.
    """

    search_text: str
    media_kind: MediaKind
    provider_ids: tuple[int, ...]
    genre_ids: tuple[int, ...]
    keyword_ids: tuple[int, ...]
    generation: int

    @property
    def is_search(self) -> bool:
        return bool(self.search_text)


class DiscoveryQueryPipeline:
    """Drive the discover/search screen on top of a :class:`CatalogClient`.

    With an empty query the primary list shows facet-filtered discover
    results. A non-empty query switches to free-text search, which also
    fetches keyword suggestions and recommendations for the first hit.
    Every list owns a :class:`PageCursor`, so at most one request per list
    is in flight, and every list is cleared whenever its query context
    changes, so late responses for an older context are discarded.
    """

    def __init__(
        self,
        client: CatalogClient,
        coordinator: SessionCoordinator,
        filters: FilterState,
        *,
        search_debounce: float = 0.3,
        prefetch_threshold: int = 5,
    ) -> None:
        self._client = client
        self._coordinator = coordinator
        self.filters = filters
        self._prefetch_threshold = prefetch_threshold

        self.results: ListState[MediaListItem] = ListState(RESULTS)
        self.movie_recs: ListState[MediaListItem] = ListState(MOVIE_RECS)
        self.tv_recs: ListState[MediaListItem] = ListState(TV_RECS)
        self.keyword_suggestions: ListState[Keyword] = ListState(KEYWORD_SUGGESTIONS)
        self.active_keywords: list[Keyword] = []
        self.watch_providers: list[WatchProvider] = []
        self.recommendation_error: str | None = None
        self.providers_error: str | None = None

        self._search_text = ""
        self._generation = 0
        self._rec_base_id: int | None = None
        self._results_context: QueryContext | None = None
        self._auth_state = coordinator.state
        self._debouncer: Debouncer[str] = Debouncer(search_debounce, self._dispatch_search)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[Callable[[str], Any]] = []
        self._keyword_listeners: list[Callable[[], Any]] = []

        filters.on_change(self._on_filters_changed)
        coordinator.subscribe(self._on_auth_changed)

    # -- observable state ---------------------------------------------------

    @property
    def search_text(self) -> str:
        return self._search_text

    @property
    def mode(self) -> str:
        return SEARCH_MODE if self._search_text.strip() else DISCOVER_MODE

    def current_context(self) -> QueryContext:
        return QueryContext(
            search_text=self._search_text,
            media_kind=self.filters.media_kind,
            provider_ids=tuple(sorted(self.filters.provider_ids)),
            genre_ids=tuple(sorted(self.filters.genre_ids)),
            keyword_ids=tuple(sorted(self.filters.keyword_ids)),
            generation=self._generation,
        )

    @property
    def results_context(self) -> QueryContext | None:
        """Context the primary list was loaded for, ``None`` before any load."""

        return self._results_context

    def section(self, name: str) -> ListState[MediaListItem]:
        """Return the paginated list called ``name`` or raise ``KeyError``."""

        sections = {RESULTS: self.results, MOVIE_RECS: self.movie_recs, TV_RECS: self.tv_recs}
        return sections[name]

    def on_change(self, listener: Callable[[str], Any]) -> None:
        self._listeners.append(listener)

    def on_keyword_activated(self, listener: Callable[[], Any]) -> None:
        """Register the "switch to the advanced view" signal."""

        self._keyword_listeners.append(listener)

    def to_payload(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "searchText": self._search_text,
            "mediaKind": self.filters.media_kind.value,
            "providerIds": sorted(self.filters.provider_ids),
            "genreIds": sorted(self.filters.genre_ids),
            "activeKeywordIds": sorted(self.filters.keyword_ids),
            "activeKeywords": [keyword.to_payload() for keyword in self.active_keywords],
            "results": self.results.to_payload(),
            "movieRecs": self.movie_recs.to_payload(),
            "tvRecs": self.tv_recs.to_payload(),
            "keywordSuggestions": self.keyword_suggestions.to_payload(),
            "recommendationError": self.recommendation_error,
            "watchProviders": [provider.to_payload() for provider in self.watch_providers],
            "providersError": self.providers_error,
        }

    # -- user intents -------------------------------------------------------

    def set_search_text(self, text: str) -> None:
        """Record the query text; the last value is dispatched after a pause."""

        if text == self._search_text:
            return
        self._search_text = text
        self._notify("search_text")
        self._debouncer.push(text)

    def set_media_kind(self, kind: MediaKind) -> bool:
        return self.filters.set_media_kind(kind)

    def toggle_provider(self, provider_id: int) -> bool:
        return self.filters.toggle_provider(provider_id)

    def toggle_genre(self, genre_id: int) -> bool:
        return self.filters.toggle_genre(genre_id)

    async def activate(self, keyword: Keyword) -> bool:
        """Filter discover results by ``keyword``, leaving search mode."""

        if keyword.id in self.filters.keyword_ids:
            return False
        self._debouncer.cancel()
        if self._search_text:
            self._search_text = ""
            self._notify("search_text")
        self.filters.add_keyword(keyword.id)
        if not any(active.id == keyword.id for active in self.active_keywords):
            self.active_keywords = sorted(
                [*self.active_keywords, keyword], key=lambda k: name_sort_key(k.name)
            )
        self._clear_search_state()
        self._notify("active_keywords")
        for listener in list(self._keyword_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Keyword activation listener %r failed", listener)
        await self.load_discover(reset=True)
        return True

    async def remove(self, keyword_id: int) -> bool:
        changed = self.filters.remove_keyword(keyword_id)
        remaining = [keyword for keyword in self.active_keywords if keyword.id != keyword_id]
        if not changed and len(remaining) == len(self.active_keywords):
            return False
        self.active_keywords = remaining
        self._notify("active_keywords")
        # A running text search hides discover results until the query is cleared.
        if self.mode == DISCOVER_MODE:
            await self.load_discover(reset=True)
        return True

    async def load_more(self, section: str, current_item_id: int) -> PageOutcome:
        """Fetch the next page of ``section`` once ``current_item_id`` nears the end."""

        state = self.section(section)
        if not should_prefetch(state.items, current_item_id, self._prefetch_threshold):
            return PageOutcome.SKIPPED
        if section == RESULTS:
            # Pending text or facet edits reset the list once they land.
            context = self._results_context
            if context is None:
                return PageOutcome.SKIPPED
            if context.is_search:
                return await self._search_page(context.search_text)
            return await self._discover_page(context)
        if self._rec_base_id is None:
            return PageOutcome.SKIPPED
        kind = MediaKind.MOVIE if section == MOVIE_RECS else MediaKind.TV
        return await self._recommendation_page(state, self._rec_base_id, kind)

    # -- loaders ------------------------------------------------------------

    async def load_discover(self, reset: bool = False) -> PageOutcome:
        """Load a discover page for the current facets and keywords.

        Without ``reset`` this continues the discover list already shown;
        if the list holds search results it starts over instead.
        """

        context = self._results_context
        if reset or context is None or context.is_search:
            kind = self.filters.media_kind
            if not kind.is_discoverable:
                logger.warning("Unsupported media kind for discover: %s", kind.value)
                return PageOutcome.SKIPPED
            context = self._restart_results("")
        return await self._discover_page(context)

    async def fetch_recommendations(self, base_id: int) -> None:
        """Load movie and TV recommendations for ``base_id`` side by side."""

        self._rec_base_id = base_id
        self.movie_recs.clear()
        self.tv_recs.clear()
        self.recommendation_error = None
        movie_token = self.movie_recs.generation
        tv_token = self.tv_recs.generation

        movie_outcome, tv_outcome = await asyncio.gather(
            self._recommendation_page(self.movie_recs, base_id, MediaKind.MOVIE),
            self._recommendation_page(self.tv_recs, base_id, MediaKind.TV),
        )
        if movie_token != self.movie_recs.generation or tv_token != self.tv_recs.generation:
            return

        movie_failed = movie_outcome is PageOutcome.FAILED
        tv_failed = tv_outcome is PageOutcome.FAILED
        if movie_failed and tv_failed:
            self.recommendation_error = "Failed to load recommendations."
        elif movie_failed:
            self.recommendation_error = self.movie_recs.error
        elif tv_failed:
            self.recommendation_error = self.tv_recs.error
        self._notify("recommendations")

    async def filter_usable_keywords(self, keywords: Iterable[Keyword]) -> list[Keyword]:
        """Keep the keywords that match at least one movie or TV show."""

        async def probe(keyword: Keyword) -> tuple[Keyword | None, bool]:
            outcomes = await asyncio.gather(
                self._client.discover(MediaKind.MOVIE, keyword_ids=[keyword.id], page=1),
                self._client.discover(MediaKind.TV, keyword_ids=[keyword.id], page=1),
                return_exceptions=True,
            )
            unauthorized = False
            usable = False
            for outcome in outcomes:
                if isinstance(outcome, PagedResults):
                    usable = usable or bool(outcome.results)
                elif isinstance(outcome, AuthorizationFailure):
                    unauthorized = True
                else:
                    logger.warning("Error probing keyword %s: %s", keyword.name, outcome)
            return (keyword if usable else None), unauthorized

        probed = await asyncio.gather(*(probe(keyword) for keyword in keywords))
        if any(unauthorized for _, unauthorized in probed):
            self._recover()
        survivors = [keyword for keyword, _ in probed if keyword is not None]
        return sorted(survivors, key=lambda keyword: name_sort_key(keyword.name))

    async def load_basics(self) -> None:
        """Load watch providers and make sure discover has something to show."""

        if self._is_gated():
            return
        outcomes = await asyncio.gather(
            self._client.watch_providers(MediaKind.MOVIE),
            self._client.watch_providers(MediaKind.TV),
            return_exceptions=True,
        )
        combined: list[WatchProvider] = []
        for outcome in outcomes:
            if isinstance(outcome, AuthorizationFailure):
                self._recover()
                return
            if isinstance(outcome, CatalogError):
                logger.warning("Provider load error: %s", outcome)
                self.providers_error = f"Failed to load service configuration. {outcome}"
                self.watch_providers = []
                self._notify("watch_providers")
                return
            if isinstance(outcome, BaseException):
                raise outcome
            combined.extend(outcome)

        self.watch_providers = sorted_by_name(
            unique_by_id(combined, key=lambda provider: provider.id),
            key=lambda provider: provider.name,
        )
        self.providers_error = None
        self._notify("watch_providers")

        if not self.filters.provider_ids and self.watch_providers:
            # The facet listener reloads discover for the new selection.
            self.filters.set_provider_ids(provider.id for provider in self.watch_providers)
            return
        if (
            self._coordinator.state.is_authenticated
            and not self.results.items
            and self.mode == DISCOVER_MODE
            and not self.filters.keyword_ids
        ):
            await self.load_discover(reset=True)

    # -- lifecycle ----------------------------------------------------------

    async def wait_for_idle(self) -> None:
        """Wait for the pending search and every background reload."""

        while True:
            await self._debouncer.flush()
            pending = [task for task in self._tasks if not task.done()]
            if not pending and not self._debouncer.pending:
                return
            if pending:
                await asyncio.wait(pending)

    async def aclose(self) -> None:
        self._coordinator.unsubscribe(self._on_auth_changed)
        self._debouncer.cancel()
        await self._debouncer.aclose()
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- internals ----------------------------------------------------------

    async def _dispatch_search(self, text: str) -> None:
        if text != self._search_text:
            return
        query = text.strip()
        if not query:
            self._clear_search_state()
            await self.load_discover(reset=True)
            return
        await self._run_search(query)

    async def _run_search(self, query: str) -> None:
        self._clear_search_state()
        generation = self._restart_results(query).generation

        outcome = await self._search_page(query)
        if outcome is not PageOutcome.LOADED or generation != self._generation:
            return

        jobs = [self._load_keyword_suggestions(query)]
        if self.results.items:
            jobs.append(self.fetch_recommendations(self.results.items[0].id))
        await asyncio.gather(*jobs)

    def _restart_results(self, query: str) -> QueryContext:
        """Empty the primary list and stamp it with a fresh context."""

        self._generation += 1
        self.results.clear()
        self._results_context = replace(self.current_context(), search_text=query)
        self._notify(RESULTS)
        return self._results_context

    async def _discover_page(self, context: QueryContext) -> PageOutcome:
        kind = context.media_kind

        def fetch(page: int) -> Awaitable[PagedResults]:
            return self._client.discover(
                kind,
                provider_ids=list(context.provider_ids),
                genre_ids=list(context.genre_ids),
                keyword_ids=list(context.keyword_ids),
                page=page,
            )

        return await self._load_page(
            self.results,
            fetch,
            lambda exc: f"Failed to load {kind.display_name}. {exc}",
        )

    async def _search_page(self, query: str) -> PageOutcome:
        return await self._load_page(
            self.results,
            lambda page: self._client.search(query, page),
            lambda exc: f"Search failed. {exc}",
        )

    async def _recommendation_page(
        self, state: ListState[MediaListItem], base_id: int, kind: MediaKind
    ) -> PageOutcome:
        label = "movie" if kind is MediaKind.MOVIE else "TV"
        return await self._load_page(
            state,
            lambda page: self._client.recommendations(base_id, kind, page),
            lambda exc: f"Failed to load {label} recommendations. {exc}",
        )

    async def _load_keyword_suggestions(self, query: str) -> None:
        state = self.keyword_suggestions
        token = state.generation
        if not state.cursor.begin_loading():
            return
        self._notify(KEYWORD_SUGGESTIONS)
        settled = False
        try:
            try:
                raw = await self._client.keyword_search(query)
                usable = await self.filter_usable_keywords(raw)
            except AuthorizationFailure:
                if token == state.generation:
                    state.cursor.cancel_loading()
                settled = True
                self._recover()
                return
            except CatalogError as exc:
                settled = True
                if token != state.generation:
                    return
                logger.warning("Keyword search error: %s", exc)
                state.cursor.cancel_loading()
                state.items = []
                state.error = f"Failed to load keyword suggestions. {exc}"
                self._notify(KEYWORD_SUGGESTIONS)
                return
            settled = True
            if token != state.generation:
                logger.debug("Discarding keyword suggestions for %r", query)
                return
            state.items = usable
            state.error = None
            state.cursor.end_loading(1)
            self._notify(KEYWORD_SUGGESTIONS)
        finally:
            if not settled and token == state.generation:
                state.cursor.cancel_loading()

    async def _load_page(
        self,
        state: ListState[MediaListItem],
        fetch: Callable[[int], Awaitable[PagedResults]],
        describe_error: Callable[[CatalogError], str],
    ) -> PageOutcome:
        """Run one admitted page request for ``state``.

        Page 1 replaces the list and later pages append. Auth failures are
        handed to the coordinator without a visible error; other failures
        only surface while the list has nothing to show.
        """

        if self._is_gated():
            logger.debug("Skipping %s load while signed out", state.name)
            return PageOutcome.SKIPPED
        cursor = state.cursor
        if not cursor.begin_loading():
            return PageOutcome.SKIPPED
        token = state.generation
        page = cursor.page
        self._notify(state.name)
        settled = False
        try:
            try:
                response = await fetch(page)
            except AuthorizationFailure:
                settled = True
                if token == state.generation:
                    cursor.cancel_loading()
                    self._notify(state.name)
                self._recover()
                return PageOutcome.AUTH_FAILED
            except CatalogError as exc:
                settled = True
                if token != state.generation:
                    return PageOutcome.STALE
                logger.warning("Loading %s page %s failed: %s", state.name, page, exc)
                cursor.cancel_loading()
                if page == 1 or not state.items:
                    state.error = describe_error(exc)
                self._notify(state.name)
                return PageOutcome.FAILED
            settled = True
            if token != state.generation:
                logger.debug("Discarding stale %s page %s", state.name, page)
                return PageOutcome.STALE
            state.items = response.results if page == 1 else [*state.items, *response.results]
            state.error = None
            cursor.end_loading(response.total_pages)
            self._notify(state.name)
            return PageOutcome.LOADED
        finally:
            if not settled and token == state.generation:
                cursor.cancel_loading()

    def _clear_search_state(self) -> None:
        self.keyword_suggestions.clear()
        self.movie_recs.clear()
        self.tv_recs.clear()
        self._rec_base_id = None
        self.recommendation_error = None

    def _is_gated(self) -> bool:
        return self._coordinator.state.status is AuthStatus.UNAUTHENTICATED

    def _recover(self) -> None:
        self._spawn(self._coordinator.recover_from_auth_failure())

    def _on_filters_changed(self, field_name: str) -> None:
        self._notify("filters")
        if field_name == KEYWORDS:
            return
        if self.mode == DISCOVER_MODE:
            self._spawn(self.load_discover(reset=True))

    def _on_auth_changed(self, state: AuthState) -> None:
        previous, self._auth_state = self._auth_state, state
        if state.is_authenticated and not previous.is_authenticated:
            self._spawn(self.load_basics())

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._guard(coroutine))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(coroutine: Coroutine[Any, Any, Any]) -> None:
        try:
            await coroutine
        except Exception:
            logger.exception("Background discovery task failed")

    def _notify(self, section: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(section)
            except Exception:
                logger.exception("Discovery listener %r failed for %s", listener, section)
