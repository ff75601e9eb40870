"""
Timer and sleep primitives used by the controllers.
"""
import asyncio
from typing import Callable, Optional


class TimerHandle:
    """Cancellable handle for a scheduled callback."""

    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class Scheduler:
    """Schedules callbacks and sleeps on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        return TimerHandle(self.loop.call_later(delay, callback))

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)

    def time(self) -> float:
        return self.loop.time()
