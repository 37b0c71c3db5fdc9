from __future__ import annotations

import asyncio

import pytest

from gatekeeper_bot.registry.admission_guard import AdmissionGuard


@pytest.mark.asyncio
async def test_hold_is_released_on_error() -> None:
    guard = AdmissionGuard()

    with pytest.raises(RuntimeError):
        async with guard.hold(100, [1, 2]):
            assert guard.is_held(100, 1)
            assert guard.is_held(100, 2)
            raise RuntimeError("boom")

    assert not guard.is_held(100, 1)
    assert not guard.is_held(100, 2)


@pytest.mark.asyncio
async def test_overlapping_holds_release_after_last_exit() -> None:
    guard = AdmissionGuard()

    async with guard.hold(100, [1]):
        async with guard.hold(100, [1]):
            pass
        assert guard.is_held(100, 1)
    assert not guard.is_held(100, 1)


@pytest.mark.asyncio
async def test_wait_released_wakes_when_hold_ends() -> None:
    guard = AdmissionGuard()
    entered = asyncio.Event()
    leave = asyncio.Event()

    async def admission() -> None:
        async with guard.hold(100, [1]):
            entered.set()
            await leave.wait()

    task = asyncio.create_task(admission())
    await entered.wait()
    waiter = asyncio.create_task(guard.wait_released(100, 1, timeout=1.0))
    await asyncio.sleep(0)
    assert not waiter.done()

    leave.set()
    assert await waiter is True
    await task


@pytest.mark.asyncio
async def test_wait_released_times_out_while_held() -> None:
    guard = AdmissionGuard()

    async with guard.hold(100, [1]):
        assert await guard.wait_released(100, 1, timeout=0.01) is False
        assert await guard.wait_released(100, 2, timeout=0.01) is True
