"""Device-side sync client: pull-sync, write-back and the typed API client.

Usage::

    from healthsync.client import HealthApiClient, PullSyncEngine

    api = HealthApiClient(settings)
    result = await PullSyncEngine(source, api, store, settings).run()
"""

from healthsync.client.api import HealthApiClient
from healthsync.client.background import run_from_settings, run_periodic_sync
from healthsync.client.config import ClientSettings
from healthsync.client.errors import HealthApiError
from healthsync.client.sync import PullSyncEngine, SyncRunResult, SyncSummary
from healthsync.client.writeback import WriteBackEngine, WriteBackResult

__all__ = [
    "ClientSettings",
    "HealthApiClient",
    "HealthApiError",
    "PullSyncEngine",
    "SyncRunResult",
    "SyncSummary",
    "WriteBackEngine",
    "WriteBackResult",
    "run_from_settings",
    "run_periodic_sync",
]
