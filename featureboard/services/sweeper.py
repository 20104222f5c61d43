from __future__ import annotations

import asyncio
import logging

from featureboard.errors import TransportError
from featureboard.storage.uploads import EphemeralUploadManager

logger = logging.getLogger(__name__)


async def temp_sweep_worker(manager: EphemeralUploadManager, stop_event: asyncio.Event, *, interval_seconds: int) -> None:
    """Periodically delete stale temporary uploads until ``stop_event`` is set."""

    while not stop_event.is_set():
        try:
            report = await manager.sweep_expired()
        except TransportError:
            logger.warning("Temp upload sweep failed; retrying in %ss", interval_seconds, exc_info=True)
        except Exception:
            logger.exception("Temp upload sweep crashed; retrying in %ss", interval_seconds)
        else:
            if report.count:
                logger.info("Background sweep removed %d temp file(s)", report.count)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


async def stop_sweep_worker(task: asyncio.Task | None, stop_event: asyncio.Event) -> None:
    """Signal the worker to stop and wait for it. A crashed worker is logged, never re-raised."""

    stop_event.set()
    if task is None:
        return
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Temp sweep worker was cancelled")
    except Exception:
        logger.exception("Temp sweep worker exited with an error")
