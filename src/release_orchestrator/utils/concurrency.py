"""Run-level timeout and cooperative cancellation for the stage scheduler."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancellationToken:
    """One-shot cancel signal shared between the CLI and a running pipeline."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "operation cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError(self.reason)


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` under a wall-clock ceiling.

    Whichever comes first wins: the result, ``cancel_token`` firing
    (``CancelledError``), or the ceiling (``TimeoutError``). In the latter two
    cases the work has already been cancelled and awaited on return, so any
    subprocess it owned is gone.
    """

    if timeout_seconds <= 0:
        _discard(coroutine)
        raise ValueError("timeout_seconds must be > 0")
    token = cancel_token if cancel_token is not None else CancellationToken()
    if token.is_cancelled:
        _discard(coroutine)
        raise asyncio.CancelledError(token.reason)

    work: asyncio.Future[T] = asyncio.ensure_future(coroutine)
    watcher = asyncio.create_task(token.wait())
    try:
        await asyncio.wait(
            {work, watcher}, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work.done():
            return work.result()
        await _stop(work)
        if token.is_cancelled:
            raise asyncio.CancelledError(token.reason)
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        # Also reached when the caller itself is cancelled mid-wait.
        if not work.done():
            await _stop(work)
        await _stop(watcher)


async def _stop(task: asyncio.Future[Any]) -> None:
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


def _discard(awaitable: Awaitable[object]) -> None:
    # A coroutine that is never scheduled must be closed or CPython warns at GC.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "run_with_timeout",
]
