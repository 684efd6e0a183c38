"""Debouncer replace-on-new-input behaviour."""

from __future__ import annotations

import asyncio

import pytest

from app.debounce import Debouncer


@pytest.mark.anyio("asyncio")
async def test_only_last_value_fires_after_quiet_period() -> None:
    received: list[str] = []

    async def record(value: str) -> None:
        received.append(value)

    debouncer: Debouncer[str] = Debouncer(0.05, record)
    for text in ("a", "av", "avengers"):
        debouncer.push(text)
        await asyncio.sleep(0.01)

    assert received == []
    await debouncer.flush()

    assert received == ["avengers"]
    assert debouncer.pending is False


@pytest.mark.anyio("asyncio")
async def test_cancel_drops_pending_value() -> None:
    received: list[int] = []

    async def record(value: int) -> None:
        received.append(value)

    debouncer: Debouncer[int] = Debouncer(0.02, record)
    debouncer.push(1)
    debouncer.cancel()
    await asyncio.sleep(0.05)

    assert received == []


@pytest.mark.anyio("asyncio")
async def test_new_push_does_not_cancel_running_callback() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    finished: list[str] = []

    async def slow(value: str) -> None:
        started.set()
        await release.wait()
        finished.append(value)

    debouncer: Debouncer[str] = Debouncer(0.0, slow)
    debouncer.push("first")
    await started.wait()
    debouncer.push("second")
    release.set()
    await debouncer.flush()

    assert finished == ["first", "second"]


@pytest.mark.anyio("asyncio")
async def test_callback_errors_are_logged(caplog) -> None:
    async def boom(value: str) -> None:
        raise RuntimeError("nope")

    debouncer: Debouncer[str] = Debouncer(0.0, boom)
    debouncer.push("x")
    await debouncer.flush()

    assert "Debounced callback failed" in caplog.text
