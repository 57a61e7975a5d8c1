"""
Cancellation context for long-running watch operations.

A WatchContext is the single token that governs a watcher's lifetime. It can be
cancelled explicitly (e.g. from a signal handler) or expire at a deadline, and
the two outcomes are reported as different errors:

- cancel()          -> error() is GracefulShutdown
- deadline reached  -> error() is WatchDeadlineExceeded (a TimeoutError)

Cancellation is cooperative. Code that wants to stop early checks done(), or
awaits through sleep()/run(). Work that never consults the context (such as an
in-flight pack generation) runs to completion.
"""
import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from nomad_mcp_pack.core.errors import GracefulShutdown, WatchDeadlineExceeded

T = TypeVar("T")


class WatchContext:
    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Optional lifetime in seconds, measured from construction.
        """
        self._cancelled = asyncio.Event()
        self._explicit = False
        self._expired = False
        self._deadline: Optional[float] = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    def cancel(self) -> None:
        """Request a graceful stop. Safe to call more than once."""
        self._explicit = True
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._explicit

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def done(self) -> bool:
        if self._explicit or self._expired:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._expired = True
            return True
        return False

    def error(self) -> Optional[Exception]:
        """The reason the context finished, or None while it is still live."""
        if not self.done():
            return None
        if self._explicit:
            return GracefulShutdown()
        return WatchDeadlineExceeded()

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep for up to ``seconds``, waking early if the context finishes.

        Returns:
            True if the context is done, False if the full delay elapsed.
        """
        if self.done():
            return True

        wait = seconds
        remaining = self.remaining()
        bounded_by_deadline = remaining is not None and remaining <= seconds
        if bounded_by_deadline:
            wait = remaining

        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=max(wait, 0.0))
        except asyncio.TimeoutError:
            if bounded_by_deadline:
                self._expired = True
        return self.done()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the context finishes first.

        If the context finishes first the awaitable is cancelled and the
        context's error is raised.
        """
        if self.done():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_done()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancelled.wait())
        try:
            finished, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in finished:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        if not finished:
            self._expired = True
        self.raise_if_done()
        raise RuntimeError("context finished without an error")  # pragma: no cover
