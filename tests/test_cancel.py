from __future__ import annotations

import asyncio

import pytest

from conduit.cancel import CancelSignal, run_cancellable
from conduit.errors import QueryAborted

pytestmark = pytest.mark.unit


def test_cancel_is_idempotent_and_keeps_first_reason() -> None:
    signal = CancelSignal()
    assert signal.cancelled is False

    signal.cancel("first")
    signal.cancel("second")

    assert signal.cancelled is True
    assert signal.reason == "first"
    with pytest.raises(QueryAborted) as info:
        signal.raise_if_cancelled()
    assert info.value.reason == "first"


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled() -> None:
    signal = CancelSignal()

    async def work() -> int:
        await asyncio.sleep(0)
        return 7

    assert await signal.run(work()) == 7


@pytest.mark.asyncio
async def test_run_cancels_pending_work() -> None:
    signal = CancelSignal()
    started = asyncio.Event()
    was_cancelled = False

    async def work() -> None:
        nonlocal was_cancelled
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            was_cancelled = True
            raise

    task = asyncio.create_task(signal.run(work()))
    await started.wait()
    signal.cancel("abort")

    with pytest.raises(QueryAborted):
        await task
    assert was_cancelled is True


@pytest.mark.asyncio
async def test_run_on_fired_signal_never_starts_work() -> None:
    signal = CancelSignal()
    signal.cancel()
    ran = False

    async def work() -> None:
        nonlocal ran
        ran = True

    with pytest.raises(QueryAborted):
        await signal.run(work())
    assert ran is False


@pytest.mark.asyncio
async def test_sleep_wakes_early_on_cancel() -> None:
    signal = CancelSignal()
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, signal.cancel)

    start = loop.time()
    with pytest.raises(QueryAborted):
        await signal.sleep(5.0)
    assert loop.time() - start < 1.0


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel() -> None:
    signal = CancelSignal()
    await signal.sleep(0.001)
    await signal.sleep(0)


@pytest.mark.asyncio
async def test_run_cancellable_without_signal_awaits_directly() -> None:
    async def work() -> str:
        return "ok"

    assert await run_cancellable(work(), None) == "ok"
