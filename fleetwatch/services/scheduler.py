"""
Periodic scheduler with a cancellation token
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Ticker:
    """Runs an async callback every `interval` seconds until stopped.

    stop() only sets the token; a callback already running finishes first, so a
    per-vessel update in flight is never cut in half.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        stop_event: Optional[asyncio.Event] = None,
    ):
        self.name = name
        self.interval = interval
        self.callback = callback
        self.stop_event = stop_event or asyncio.Event()
        self.ticks = 0
        self.error: Optional[BaseException] = None

    @property
    def is_running(self) -> bool:
        return not self.stop_event.is_set()

    @property
    def failed(self) -> bool:
        return self.error is not None

    async def run(self):
        logger.info(f"[{self.name}] Ticker started (interval={self.interval}s)")
        while not self.stop_event.is_set():
            try:
                await self.callback()
            except Exception as e:
                logger.exception(f"[{self.name}] Tick failed, stopping")
                self.error = e
                self.stop_event.set()
                raise
            self.ticks += 1
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"[{self.name}] Ticker stopped after {self.ticks} ticks")

    def stop(self):
        self.stop_event.set()
