import asyncio

import pytest

from caption_relay.workers.scheduler import PeriodicTimer, Watchdog


@pytest.mark.asyncio
async def test_periodic_timer_ticks_until_cancelled():
    ticks = []

    async def tick():
        ticks.append(1)

    timer = PeriodicTimer(tick, 0.02, name="test-timer")
    timer.start()
    timer.start()  # no second loop
    await asyncio.sleep(0.11)
    timer.cancel()
    count = len(ticks)
    await asyncio.sleep(0.05)

    assert count >= 2
    assert len(ticks) == count
    assert timer.running is False


@pytest.mark.asyncio
async def test_periodic_timer_survives_failing_tick():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    timer = PeriodicTimer(flaky, 0.02)
    timer.start()
    await asyncio.sleep(0.09)
    timer.cancel()

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_cancel_lets_running_tick_finish():
    finished = asyncio.Event()
    timer = None

    async def slow_tick():
        timer.cancel()
        await asyncio.sleep(0.02)
        finished.set()

    timer = PeriodicTimer(slow_tick, 0.01)
    timer.start()
    await asyncio.wait_for(finished.wait(), timeout=1.0)
    assert finished.is_set()


@pytest.mark.asyncio
async def test_watchdog_fires_once_after_timeout():
    fired = []

    async def on_timeout():
        fired.append(1)

    dog = Watchdog(0.03, on_timeout)
    dog.arm()
    assert dog.armed
    await asyncio.sleep(0.1)

    assert fired == [1]
    assert dog.armed is False


@pytest.mark.asyncio
async def test_rearming_postpones_watchdog():
    fired = []

    async def on_timeout():
        fired.append(1)

    dog = Watchdog(0.06, on_timeout)
    dog.arm()
    for _ in range(3):
        await asyncio.sleep(0.03)
        dog.arm()
    assert fired == []

    await asyncio.sleep(0.12)
    assert fired == [1]


@pytest.mark.asyncio
async def test_watchdog_callback_may_cancel_itself():
    done = asyncio.Event()
    dog = None

    async def on_timeout():
        dog.cancel()
        await asyncio.sleep(0)
        done.set()

    dog = Watchdog(0.01, on_timeout)
    dog.arm()
    await asyncio.wait_for(done.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_cancelled_watchdog_never_fires():
    fired = []

    async def on_timeout():
        fired.append(1)

    dog = Watchdog(0.02, on_timeout)
    dog.arm()
    dog.cancel()
    await asyncio.sleep(0.06)

    assert fired == []
