"""SQLAlchemy models."""

from stockcount.models.location import Location
from stockcount.models.inventory_item import InventoryItem, CountingWorkflow
from stockcount.models.container import ContainerType, ContainerInstance
from stockcount.models.inventory import (
    CountSession,
    CountRecord,
    SessionStatus,
    CountMethod,
    OPEN_STATUSES,
    WEIGHT_BASED_METHODS,
)
from stockcount.models.anomaly import WeightAnomalyDetection
from stockcount.models.offline_sync import OfflineScanLog, ScanWorkflowType
from stockcount.models.audit import AuditLogEntry

__all__ = [
    "Location",
    "InventoryItem",
    "CountingWorkflow",
    "ContainerType",
    "ContainerInstance",
    "CountSession",
    "CountRecord",
    "SessionStatus",
    "CountMethod",
    "OPEN_STATUSES",
    "WEIGHT_BASED_METHODS",
    "WeightAnomalyDetection",
    "OfflineScanLog",
    "ScanWorkflowType",
    "AuditLogEntry",
]
