from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from caption_relay.core.logger import get_logger

log = get_logger(__name__)


TimerCallable = Callable[[], Awaitable[None]]


async def _run_guarded(func: TimerCallable, name: str) -> None:
    try:
        await func()
    except Exception:
        log.exception("Timer callback %s failed", name)


class PeriodicTimer:
    """Runs a coroutine every `interval_sec` until cancelled.

    The first tick fires one interval after start(). A tick that is already
    running when cancel() is called finishes on its own; only the waiting
    loop is cancelled.
    """

    def __init__(self, func: TimerCallable, interval_sec: float, name: str = "periodic-timer") -> None:
        self._func = func
        self.interval_sec = interval_sec
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            await asyncio.shield(_run_guarded(self._func, self._name))


class Watchdog:
    """Single-shot countdown that calls `on_timeout` unless re-armed in time."""

    def __init__(self, timeout_sec: float, on_timeout: TimerCallable, name: str = "watchdog") -> None:
        self.timeout_sec = timeout_sec
        self._on_timeout = on_timeout
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._firing: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._countdown(), name=self._name)

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _countdown(self) -> None:
        await asyncio.sleep(self.timeout_sec)
        # Detach before calling back so the callback can cancel or re-arm us.
        self._task = None
        self._firing = asyncio.current_task()
        try:
            await _run_guarded(self._on_timeout, self._name)
        finally:
            self._firing = None
