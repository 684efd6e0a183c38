"""Process-wide authority over the catalog session state."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable

from ..config import Settings
from ..models import AuthState
from .catalog import CatalogClient

logger = logging.getLogger(__name__)

AuthListener = Callable[[AuthState], Any]


class SessionCoordinator:
    """Own the single :class:`AuthState` and decide when to probe the server.

    Construct one per process and hand it to every consumer. All mutable
    state is guarded by one ``asyncio.Lock`` and no critical section awaits
    network I/O, so concurrent callers always observe a consistent throttle
    timestamp and share whichever probe is in flight.

    Probes publish in two phases: when a session cookie is stored the
    coordinator optimistically reports ``Authenticated`` and then publishes
    the server's verdict, which may briefly disagree with the first value.
    """

    def __init__(
        self,
        *,
        probe_throttle_seconds: float = 30.0,
        session_cookie_name: str = "connect.sid",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._throttle = max(float(probe_throttle_seconds), 0.0)
        self._cookie_name = session_cookie_name
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = AuthState.unknown()
        self._client: CatalogClient | None = None
        self._generation = 0
        self._last_probe_at: float | None = None
        self._probe_task: asyncio.Task[AuthState] | None = None
        self._listeners: list[AuthListener] = []
        self._listener_tasks: set[asyncio.Task[Any]] = set()
        self._streams: set[asyncio.Queue[AuthState]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCoordinator":
        return cls(
            probe_throttle_seconds=settings.probe_throttle_seconds,
            session_cookie_name=settings.session_cookie_name,
        )

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def client(self) -> CatalogClient | None:
        return self._client

    # -- lifecycle ----------------------------------------------------------

    async def configure(self, client: CatalogClient | None, *, auto_probe: bool = True) -> None:
        """Bind ``client`` and schedule a probe against it without waiting."""

        async with self._lock:
            self._client = client
            self._generation += 1
            self._last_probe_at = None
            self._probe_task = None
            if auto_probe:
                self._start_probe_locked()
        logger.info("Session coordinator configured (generation %s)", self._generation)

    async def aclose(self) -> None:
        async with self._lock:
            self._generation += 1
            task, self._probe_task = self._probe_task, None
        pending = [t for t in (task, *self._listener_tasks) if t is not None and not t.done()]
        for pending_task in pending:
            pending_task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # -- public operations --------------------------------------------------

    async def ensure_authenticated(self) -> AuthState:
        """Probe unless already authenticated or a probe ran recently."""

        async with self._lock:
            if self._state.is_authenticated:
                return self._state
            task = self._in_flight()
            if task is None:
                if self._is_throttled():
                    logger.debug("Skipping session probe, last one is still fresh")
                    return self._state
                task = self._start_probe_locked()
        return await self._await_probe(task)

    async def probe_session(self) -> AuthState:
        """Join the in-flight probe or start a new one."""

        async with self._lock:
            task = self._in_flight() or self._start_probe_locked()
        return await self._await_probe(task)

    async def recover_from_auth_failure(self) -> AuthState:
        """React to a 401/403 seen anywhere in the process.

        While the state is already ``Unknown`` a recovery is under way and
        this call does nothing. Otherwise ``Unknown`` is published and a
        fresh probe replaces any probe already in flight, whose verdict may
        predate the failure.
        """

        async with self._lock:
            if self._state.is_unknown:
                return self._state
            logger.info("Authorization failure reported, re-validating session")
            self._generation += 1
            self._publish_locked(AuthState.unknown())
            task = self._start_probe_locked()
        return await self._await_probe(task)

    async def set_state(self, state: AuthState) -> None:
        """Publish ``state`` directly, discarding any probe in flight."""

        async with self._lock:
            self._generation += 1
            self._probe_task = None
            self._publish_locked(state)

    async def wait_for_idle(self) -> None:
        while True:
            pending = [
                task
                for task in (self._probe_task, *self._listener_tasks)
                if task is not None and not task.done()
            ]
            if not pending:
                return
            await asyncio.wait(pending)

    # -- broadcast ----------------------------------------------------------

    def subscribe(self, listener: AuthListener) -> None:
        """Call ``listener`` with every new state; coroutines run as tasks."""

        self._listeners.append(listener)

    def unsubscribe(self, listener: AuthListener) -> bool:
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    async def stream(self) -> AsyncIterator[AuthState]:
        """Yield the current state and then every change."""

        queue: asyncio.Queue[AuthState] = asyncio.Queue()
        self._streams.add(queue)
        last = self._state
        try:
            yield last
            while True:
                state = await queue.get()
                if state != last:
                    last = state
                    yield state
        finally:
            self._streams.discard(queue)

    # -- internals ----------------------------------------------------------

    def _in_flight(self) -> asyncio.Task[AuthState] | None:
        task = self._probe_task
        if task is not None and not task.done():
            return task
        return None

    def _is_throttled(self) -> bool:
        if self._last_probe_at is None:
            return False
        return self._clock() - self._last_probe_at < self._throttle

    def _start_probe_locked(self) -> asyncio.Task[AuthState] | None:
        client = self._client
        if client is None:
            return None
        self._last_probe_at = self._clock()
        task = asyncio.get_running_loop().create_task(
            self._run_probe(client, self._generation)
        )
        self._probe_task = task
        return task

    async def _await_probe(self, task: asyncio.Task[AuthState] | None) -> AuthState:
        if task is None:
            return self._state
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return self._state
            raise

    async def _run_probe(self, client: CatalogClient, generation: int) -> AuthState:
        optimistic = False
        if client.has_session_cookie(self._cookie_name):
            async with self._lock:
                if generation == self._generation and not self._state.is_authenticated:
                    self._publish_locked(AuthState.authenticated())
                    optimistic = True

        try:
            valid = await client.is_authenticated()
        except Exception as exc:
            logger.warning("Session probe failed: %s", exc)
            valid = False

        async with self._lock:
            if generation != self._generation:
                logger.debug("Discarding session probe from a superseded generation")
                return self._state
            if valid:
                self._publish_locked(AuthState.authenticated())
            else:
                if self._state.is_authenticated and not optimistic:
                    self._publish_locked(AuthState.unknown())
                self._publish_locked(AuthState.unauthenticated())
            return self._state

    def _publish_locked(self, state: AuthState) -> None:
        if state == self._state:
            return
        logger.info("Session state %s -> %s", self._state.status.value, state.status.value)
        self._state = state
        for queue in list(self._streams):
            queue.put_nowait(state)
        for listener in list(self._listeners):
            try:
                result = listener(state)
            except Exception:
                logger.exception("Session listener %r failed", listener)
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.get_running_loop().create_task(self._run_listener(listener, result))
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_tasks.discard)

    @staticmethod
    async def _run_listener(listener: AuthListener, coroutine: Any) -> None:
        try:
            await coroutine
        except Exception:
            logger.exception("Session listener %r failed", listener)
