"""Asyncio debouncer used to coalesce bursts of change signals."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

from chatguard.util.logger import get_logger

logger = get_logger("debounce")

Callback = Callable[[], Union[None, Awaitable[Any]]]


class Debouncer:
    """
    Run a zero-argument callback once after a burst of triggers has gone quiet.

    Every ``trigger()`` restarts the quiet-period timer, so N triggers inside
    the window result in a single invocation. The callback may be a plain
    function or a coroutine function.

    When ``trigger()`` is called with no running event loop (plain
    synchronous code, tests), the callback runs immediately.
    """

    def __init__(self, delay_seconds: float, callback: Callback, *, name: str = "debounce") -> None:
        self._delay = max(0.0, float(delay_seconds))
        self._callback = callback
        self._name = name
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def delay_seconds(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        """True while a trigger is waiting for its quiet period to elapse."""
        return self._handle is not None

    def trigger(self) -> None:
        """Schedule the callback, restarting the quiet period if already scheduled."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire_sync()
            return

        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        """Drop any pending invocation."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending invocation now and wait for any callback tasks still in flight."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel the pending invocation and any running callback task."""
        self.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()

    def _fire(self) -> None:
        self._handle = None
        try:
            result = self._callback()
        except Exception:
            logger.exception("[%s] Debounced callback failed", self._name)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _fire_sync(self) -> None:
        try:
            result = self._callback()
        except Exception:
            logger.exception("[%s] Debounced callback failed", self._name)
            return

        if inspect.isawaitable(result):
            # No loop to hand the coroutine to; run it to completion here.
            asyncio.run(_await(result))

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] Debounced coroutine failed: %s", self._name, exc, exc_info=exc)


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
