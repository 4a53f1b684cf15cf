"""
Timelog Assistant — Input Debouncer.

Absorbs a burst of edits and hands the latest snapshot to a consumer only
after a quiet period. Every observe() restarts the window; a delivery that
has already started is never interrupted by later edits.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DELAY_SECONDS = 0.7


class InputDebouncer(Generic[T]):
    """Per-session debounce timer backed by an asyncio task."""

    def __init__(
        self,
        on_settle: Callable[[T], Awaitable[None]],
        delay: float = DEFAULT_DELAY_SECONDS,
        name: str = "input-debouncer",
    ) -> None:
        if delay < 0:
            raise ValueError(f"delay must be non-negative, got {delay}")
        self._on_settle = on_settle
        self._delay = delay
        self._name = name
        self._latest: T | None = None
        self._timer: asyncio.Task | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._closed = False

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        """True while a snapshot is waiting for its quiet window to elapse."""
        return self._timer is not None and not self._timer.done()

    def observe(self, snapshot: T) -> None:
        """Record the newest snapshot and restart the quiet window."""
        if self._closed:
            raise RuntimeError(f"{self._name} is closed")
        self._latest = snapshot
        self._cancel_timer()
        self._timer = asyncio.create_task(self._wait_then_deliver(), name=self._name)

    async def flush(self) -> None:
        """Deliver a pending snapshot now and wait for in-flight deliveries."""
        if self.pending:
            self._cancel_timer()
            await self._deliver()
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    async def close(self) -> None:
        """Drop any pending snapshot and wait for in-flight deliveries."""
        self._closed = True
        timer = self._timer
        self._cancel_timer()
        if timer is not None:
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)
        self._latest = None

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait_then_deliver(self) -> None:
        await asyncio.sleep(self._delay)
        # Past this point the window has elapsed: detach from the timer slot
        # so a new observe() starts a fresh window instead of cancelling us.
        current = asyncio.current_task()
        if self._timer is current:
            self._timer = None
        self._deliveries.add(current)
        try:
            await self._deliver()
        finally:
            self._deliveries.discard(current)

    async def _deliver(self) -> None:
        snapshot = self._latest
        self._latest = None
        if snapshot is None:
            return
        try:
            await self._on_settle(snapshot)
        except Exception as exc:
            logger.error("%s: consumer failed on settled snapshot: %s", self._name, exc)
