"""Send due quiz reminders without Celery.

Run one sweep from an external schedule (cron, Railway, ...):
    python -m app.scripts.scan_due_reminders
or keep a single process sweeping on its own timer:
    python -m app.scripts.scan_due_reminders --loop
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from app.services.reminder_engine import run_sweep
from app.services.sweep_loop import SweepLoop
from config import settings
import db


async def main() -> None:
    report = await run_sweep()
    print(
        f"[CRON] scan_due_reminders: checked={report.checked} due={report.due} "
        f"sent={report.sent} failed={report.failed} skipped={report.skipped}"
    )


async def loop_forever(interval: float) -> None:
    loop = SweepLoop(interval)
    try:
        await loop.run_forever()
    finally:
        await loop.stop()
        await db.dispose_engine()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--loop", action="store_true", help="keep sweeping on a timer")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.REMINDER_SWEEP_INTERVAL_SECONDS,
        help="seconds between sweeps in --loop mode",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":  # pragma: no cover
    args = _parse_args()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    if args.loop:
        print(f"[CRON] scan_due_reminders: sweeping every {args.interval:g}s")
        asyncio.run(loop_forever(args.interval))
    else:
        print("[CRON] scan_due_reminders: job started")
        try:
            db.run_sync(main())
            print("[CRON] scan_due_reminders: job completed successfully")
        except Exception as e:
            print(f"[CRON] scan_due_reminders: job failed: {e}")
