"""Regression tests for the run timeout and cancellation primitives."""

from __future__ import annotations

import asyncio
import gc
import warnings

import pytest

from release_orchestrator.utils.concurrency import CancellationToken, run_with_timeout


async def _value(delay: float, value: int = 1) -> int:
    await asyncio.sleep(delay)
    return value


async def test_returns_value_within_ceiling() -> None:
    assert await run_with_timeout(_value(0.0, 7), timeout_seconds=1.0) == 7


async def test_timeout_cancels_inner_task_before_raising() -> None:
    observed: list[str] = []

    async def stage() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            observed.append("cancelled")
            raise

    with pytest.raises(TimeoutError):
        await run_with_timeout(stage(), timeout_seconds=0.05)
    assert observed == ["cancelled"]


async def test_cancel_token_interrupts_work() -> None:
    token = CancellationToken()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(5.0), timeout_seconds=10.0, cancel_token=token)
    await canceller
    assert token.is_cancelled


async def test_already_cancelled_token_does_not_leak_coroutine() -> None:
    token = CancellationToken()
    token.cancel()

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        with pytest.raises(asyncio.CancelledError):
            await run_with_timeout(_value(0.01), timeout_seconds=1.0, cancel_token=token)
        gc.collect()

    assert not [item for item in caught if "was never awaited" in str(item.message)]


async def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValueError):
        await run_with_timeout(_value(0.0), timeout_seconds=0)


async def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


async def test_cancel_reason_is_kept_from_first_call() -> None:
    token = CancellationToken()
    token.cancel("interrupted")
    token.cancel("second")

    with pytest.raises(asyncio.CancelledError, match="interrupted"):
        token.raise_if_cancelled()


async def test_outer_cancellation_stops_the_work() -> None:
    observed: list[str] = []

    async def stage() -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            observed.append("stage cancelled")
            raise

    outer = asyncio.create_task(run_with_timeout(stage(), timeout_seconds=10.0))
    await asyncio.sleep(0.01)
    outer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await outer
    assert observed == ["stage cancelled"]
