"""Cancellable timer seam used by the session registry."""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """Anything with an idempotent ``cancel``."""

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Schedules a callback after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)
