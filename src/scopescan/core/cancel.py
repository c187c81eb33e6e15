"""Cooperative cancellation shared between a session and its probe modules."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from enum import Enum
from typing import TypeVar

from scopescan.core.errors import ScanCancelled

T = TypeVar("T")


class CancelReason(str, Enum):
    OPERATOR = "operator"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


class CancelToken:
    """Broadcast cancellation flag.

    Modules check ``cancelled`` between operations and wrap blocking I/O with
    ``guard`` so an in-flight request is abandoned as soon as the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.OPERATOR) -> bool:
        """Fire the token. Returns False if it was already fired."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled(self.reason.value if self.reason else "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            ScanCancelled: If the token fired before the operation finished
        """
        self.raise_if_cancelled()
        op = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({op, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            op.cancel()
            raise
        finally:
            waiter.cancel()
        if op.done():
            return op.result()
        op.cancel()
        # wait() never raises the child's CancelledError
        await asyncio.wait({op})
        self.raise_if_cancelled()
        raise ScanCancelled("cancelled")
