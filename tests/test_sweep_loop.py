import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from app.services.sweep_loop import SweepLoop
from app.types.schedule_contract import SweepReport


@pytest.mark.asyncio
async def test_start_sweeps_immediately():
    calls = []

    async def sweep():
        calls.append("sweep")
        return SweepReport()

    loop = SweepLoop(3600, sweep=sweep)
    loop.start()
    for _ in range(10):
        await asyncio.sleep(0)
    await loop.stop()
    assert calls == ["sweep"]
    assert loop.state == "idle"


@pytest.mark.asyncio
async def test_tick_skipped_while_sweep_in_progress():
    release = asyncio.Event()

    async def slow_sweep():
        await release.wait()
        return SweepReport(sent=1)

    loop = SweepLoop(60, sweep=slow_sweep)
    first = loop.tick()
    await asyncio.sleep(0)
    assert loop.state == "sweeping"
    assert loop.tick() is None
    assert loop.skipped_ticks == 1

    release.set()
    await first
    assert loop.state == "idle"
    assert loop.last_report.sent == 1
    assert loop.runs == 1


@pytest.mark.asyncio
async def test_failed_sweep_does_not_stop_the_loop():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise OperationalError("SELECT", {}, Exception("down"))
        return SweepReport()

    loop = SweepLoop(60, sweep=flaky)
    await loop.tick()
    await loop.tick()
    assert loop.runs == 2
    assert loop.last_report == SweepReport()


@pytest.mark.asyncio
async def test_run_forever_sweeps_until_cancelled():
    swept = asyncio.Event()

    async def sweep():
        swept.set()
        return SweepReport(sent=2)

    loop = SweepLoop(3600, sweep=sweep)
    runner = asyncio.create_task(loop.run_forever())
    await asyncio.wait_for(swept.wait(), timeout=1)
    assert loop.start() is loop.start()

    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner
    await loop.stop()
    assert loop.runs == 1
    assert loop.last_report.sent == 2


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        SweepLoop(0)
