"""
Cancellation
============

Explicit cancellation token for batch runs. Every suspension point of a run
(settle delay, rasterization, inter-task delay, pause wait) goes through the
token, so a cancelled run stops at the next await instead of polling flags.
"""

from typing import Awaitable, Optional, TypeVar
import asyncio

T = TypeVar("T")


class BatchCancelledError(Exception):
    """Raised at a suspension point once the run's token is cancelled."""

    pass


class CancellationToken:
    """One-shot cancellation signal shared by a single batch run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BatchCancelledError("Batch run was cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, waking early to raise on cancellation."""
        self.raise_if_cancelled()
        if delay > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)
        self.raise_if_cancelled()

    async def guard(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Await ``awaitable`` unless the token is cancelled or the timeout expires first.

        The pending work is cancelled and awaited before this returns, so its
        own cleanup has run by the time the caller sees the outcome. A result
        that arrives together with the cancellation is dropped.

        Raises:
            BatchCancelledError: If the token was cancelled
            asyncio.TimeoutError: If ``timeout`` seconds passed first
        """
        if self.cancelled and asyncio.iscoroutine(awaitable):
            awaitable.close()
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        done = set()
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                await asyncio.gather(work, return_exceptions=True)

        self.raise_if_cancelled()
        if work in done:
            return work.result()
        raise asyncio.TimeoutError(f"Operation timed out after {timeout}s")
