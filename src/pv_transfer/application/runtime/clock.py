"""Clock and ticker used by polling loops."""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pv_transfer.application.runtime.cancellation import CancellationToken
from pv_transfer.domain.ports import Clock

_MIN_TICK_SECONDS = 0.01


class TickOutcome(StrEnum):
    """Why a ticker wait returned."""

    TICK = "tick"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class SystemClock:
    """Wall-clock implementation of the clock port."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Ticker:
    """Wait for the next interval, cancellation, or a watched task, whichever comes first."""

    def __init__(self, clock: Clock, interval_seconds: float, token: CancellationToken) -> None:
        self._clock = clock
        self._interval_seconds = max(_MIN_TICK_SECONDS, interval_seconds)
        self._token = token

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    async def wait(self, watched: asyncio.Future[Any] | None = None) -> TickOutcome:
        """Suspend for one interval unless cancelled or `watched` finishes first."""

        if self._token.cancelled:
            return TickOutcome.CANCELLED
        if watched is not None and watched.done():
            return TickOutcome.COMPLETED

        sleeper = asyncio.ensure_future(self._clock.sleep(self._interval_seconds))
        cancel_waiter = asyncio.ensure_future(self._token.wait())
        waiters: set[asyncio.Future[Any]] = {sleeper, cancel_waiter}
        if watched is not None:
            waiters.add(watched)

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for helper in (sleeper, cancel_waiter):
                if not helper.done():
                    helper.cancel()
            await asyncio.gather(sleeper, cancel_waiter, return_exceptions=True)

        if self._token.cancelled:
            return TickOutcome.CANCELLED
        if watched is not None and watched.done():
            return TickOutcome.COMPLETED
        return TickOutcome.TICK


__all__ = ["SystemClock", "TickOutcome", "Ticker"]
