"""Cooperative cancellation token threaded through pipeline stages and provider calls."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from tender_engine.core.errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """Shared cancellation signal for one run.

    Stages call ``raise_if_cancelled()`` at their entry points; provider calls
    are wrapped with ``guard()`` so a pending network call is abandoned as soon
    as the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Fire the token. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self._reason or "Cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        On cancellation the underlying task is cancelled (fire-and-forget: its
        result, if any, is discarded) and ``OperationCancelled`` is raised.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        raise OperationCancelled(self._reason or "Cancelled")


def ensure_token(parent: CancellationToken | None) -> CancellationToken:
    """Return ``parent`` or a fresh never-cancelled token when none was given."""
    return parent if parent is not None else CancellationToken()
