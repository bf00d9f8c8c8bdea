"""Periodic background sync runner.

Runs ``PullSyncEngine.run()`` every ``interval_seconds`` (15 minutes by
default) until the stop event is set.  A failing run is logged and the
loop carries on with the next interval.
"""

from __future__ import annotations

import asyncio
import logging

from healthsync.client.api import HealthApiClient
from healthsync.client.config import ClientSettings, get_client_settings
from healthsync.client.device import DeviceSampleSource
from healthsync.client.storage import JsonFileKeyValueStore
from healthsync.client.sync import PullSyncEngine, SyncRunResult

logger = logging.getLogger("healthsync.client.background")

DEFAULT_SYNC_INTERVAL_SECONDS = 900  # 15 minutes


async def run_periodic_sync(
    engine: PullSyncEngine,
    interval_seconds: float = DEFAULT_SYNC_INTERVAL_SECONDS,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Sync on a fixed interval.

    Args:
        engine:           Configured pull-sync engine.
        interval_seconds: Pause between the end of one run and the next.
        stop_event:       Set it to stop after the current run.

    Returns:
        Number of runs attempted.
    """
    stop = stop_event or asyncio.Event()
    runs = 0

    while not stop.is_set():
        runs += 1
        try:
            result: SyncRunResult = await engine.run()
        except Exception:
            logger.exception("Background sync run %d raised", runs)
        else:
            if not result.supported:
                logger.info("Background sync unsupported here: %s", result.error)
            elif not result.authorized:
                logger.warning("Background sync not authorized: %s", result.error)
            elif result.error:
                logger.warning("Background sync run %d finished with errors: %s", runs, result.error)
            else:
                logger.debug("Background sync run %d complete", runs)

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Background sync stopped after %d run(s)", runs)
    return runs


async def run_from_settings(
    source: DeviceSampleSource,
    settings: ClientSettings | None = None,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Wire the API client, state file and sync engine from ``ClientSettings``.

    Usage::

        await run_from_settings(MyHealthStoreSource(), stop_event=stop)
    """
    settings = settings or get_client_settings()
    engine = PullSyncEngine(
        source,
        HealthApiClient(settings),
        JsonFileKeyValueStore(settings.state_path),
        settings=settings,
    )
    return await run_periodic_sync(engine, settings.sync_interval_seconds, stop_event)
