"""Background task that fires deadline-driven transitions.

Should be run for the lifetime of the API process (replaces a daily cron).
"""

import asyncio
import logging
from typing import Optional

from civicstake.services.lifecycle import QuestionLifecycle

logger = logging.getLogger(__name__)


async def run_sweeper(
    core: QuestionLifecycle,
    interval_seconds: float,
    stop: Optional[asyncio.Event] = None,
) -> None:
    """Sweep every `interval_seconds` until `stop` is set or the task is cancelled."""
    stop = stop or asyncio.Event()
    logger.info("Deadline sweeper started (every %.0fs)", interval_seconds)
    while not stop.is_set():
        try:
            await core.sweep()
        except Exception:
            # Keep sweeping; individual failures are logged by the sweep itself.
            logger.exception("Deadline sweep crashed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("Deadline sweeper stopped")
