"""Cooperative cancellation shared by the sequencer and the active job."""

from __future__ import annotations

import asyncio

from pv_transfer.domain.errors import TransferInterruptedError


class CancellationToken:
    """One-shot interruption flag that can also be awaited."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "interrupted") -> None:
        """Set the flag; later calls keep the first reason."""

        if self._reason is None:
            self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TransferInterruptedError(f"Transfer {self._reason or 'interrupted'}.")


__all__ = ["CancellationToken"]
