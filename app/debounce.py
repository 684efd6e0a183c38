"""Cancellable timer that only reacts to the last value after quiescence."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Debouncer(Generic[T]):
    """Delay ``callback`` until ``push`` has not been called for ``delay`` seconds.

    A new value replaces the pending one and restarts the timer. Once the
    timer fires the callback runs in its own task, so later pushes never
    cancel work that has already been dispatched.
    """

    def __init__(self, delay: float, callback: Callable[[T], Awaitable[Any]]):
        self._delay = max(float(delay), 0.0)
        self._callback = callback
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        """Whether a value is waiting for the timer or its callback is running."""

        return self._timer is not None or bool(self._running)

    def push(self, value: T) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire(value))

    def cancel(self) -> None:
        """Drop the pending value, leaving dispatched callbacks alone."""

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Wait for the pending value (if any) and every dispatched callback."""

        while self.pending:
            waiting = [task for task in (self._timer, *self._running) if task is not None]
            await asyncio.wait(waiting)

    async def aclose(self) -> None:
        self.cancel()
        if self._running:
            await asyncio.wait(list(self._running))

    async def _fire(self, value: T) -> None:
        await asyncio.sleep(self._delay)
        self._timer = None
        task = asyncio.create_task(self._run(value))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, value: T) -> None:
        try:
            await self._callback(value)
        except Exception:
            logger.exception("Debounced callback failed for %r", value)
