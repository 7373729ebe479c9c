"""Client-side offline capture: durable queue, reconciler and connectivity monitor."""

from stockcount.services.offline.connectivity import ConnectivityMonitor
from stockcount.services.offline.queue import (
    EventState,
    OfflineCaptureQueue,
    OfflineScanEvent,
    OutcomeStatus,
    SyncOutcome,
)
from stockcount.services.offline.reconciler import SyncReconciler, SyncReport

__all__ = [
    "ConnectivityMonitor",
    "EventState",
    "OfflineCaptureQueue",
    "OfflineScanEvent",
    "OutcomeStatus",
    "SyncOutcome",
    "SyncReconciler",
    "SyncReport",
]
