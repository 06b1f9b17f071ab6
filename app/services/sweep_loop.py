"""In-process sweep scheduler for single-container deployments.

Fires one sweep immediately (catch-up after downtime) and then one per
interval on a wall-clock cadence. The timer never waits for a sweep to
finish; a tick that lands while a sweep is still running is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Literal, Optional

from app.services.reminder_engine import run_sweep
from app.types.schedule_contract import SweepReport

_LOGGER = logging.getLogger(__name__)

SweepFn = Callable[[], Awaitable[SweepReport]]
LoopState = Literal["idle", "sweeping"]


class SweepLoop:
    def __init__(self, interval_seconds: float, sweep: SweepFn = run_sweep) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        self._sweep = sweep
        self._timer: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self.runs = 0
        self.skipped_ticks = 0
        self.last_report: Optional[SweepReport] = None

    @property
    def state(self) -> LoopState:
        return "sweeping" if self._current is not None and not self._current.done() else "idle"

    def tick(self) -> Optional[asyncio.Task]:
        """Launch a sweep unless one is already running."""
        if self.state == "sweeping":
            self.skipped_ticks += 1
            _LOGGER.warning("Previous sweep still running; skipping this tick")
            return None
        self._current = asyncio.create_task(self._run_once())
        return self._current

    async def _run_once(self) -> None:
        self.runs += 1
        try:
            self.last_report = await self._sweep()
        except Exception:  # noqa: BLE001
            # Store outages end this sweep only; the next tick retries.
            _LOGGER.exception("Reminder sweep failed")

    async def _timer_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            self.tick()
            next_at += self._interval
            await asyncio.sleep(max(0.0, next_at - loop.time()))

    def start(self) -> asyncio.Task:
        if self._timer is None:
            self._timer = asyncio.create_task(self._timer_loop())
        return self._timer

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if self._current is not None:
            await self._current

    async def run_forever(self) -> None:
        await self.start()


__all__ = ["SweepLoop"]
