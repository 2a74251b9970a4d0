"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, init_semaphore and reset_semaphore.
"""

import asyncio

import trello_sync.core.async_utils as mod
from trello_sync.core.async_utils import (
    init_semaphore,
    reset_semaphore,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    return a + b


async def test_run_sync_calls_function():
    result = await run_sync(_sync_add, 3, 4)
    assert result == 7


async def test_run_sync_passes_kwargs():
    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    result = await run_sync(_kw_func, name="world")
    assert result == "hello world"


async def test_init_and_reset_semaphore():
    original = mod._semaphore
    try:
        init_semaphore(3)
        assert isinstance(mod._semaphore, asyncio.Semaphore)
        reset_semaphore()
        assert mod._semaphore is None
    finally:
        mod._semaphore = original


async def test_run_sync_limited_respects_semaphore():
    """No more than max_parallel calls run at once."""
    import threading
    import time

    original = mod._semaphore
    lock = threading.Lock()
    running = 0
    peak = 0

    def _work() -> None:
        nonlocal running, peak
        with lock:
            running += 1
            peak = max(peak, running)
        time.sleep(0.02)
        with lock:
            running -= 1

    try:
        init_semaphore(2)
        await asyncio.gather(*(run_sync_limited(_work) for _ in range(6)))
        assert peak <= 2
    finally:
        mod._semaphore = original


async def test_run_sync_limited_without_semaphore():
    """run_sync_limited falls back to unbounded when semaphore is None."""
    original = mod._semaphore
    try:
        mod._semaphore = None
        result = await run_sync_limited(_sync_add, 1, 2)
        assert result == 3
    finally:
        mod._semaphore = original


async def test_run_sync_limited_propagates_exceptions():
    def _boom() -> None:
        raise RuntimeError("boom")

    original = mod._semaphore
    try:
        init_semaphore(1)
        try:
            await run_sync_limited(_boom)
        except RuntimeError as e:
            assert str(e) == "boom"
        else:
            raise AssertionError("RuntimeError not raised")
    finally:
        mod._semaphore = original
