"""Sync schemas for offline-captured scans."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from stockcount.models.offline_sync import ScanWorkflowType


class ScanCoordinates(BaseModel):
    lat: float
    lng: float


class OfflineScanMetadata(BaseModel):
    """Optional context captured with a scan."""

    quantity: Optional[Decimal] = None
    location_id: Optional[int] = None
    session_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    coordinates: Optional[ScanCoordinates] = None


class OfflineScanEventIn(BaseModel):
    """One scan as captured on the device.

    ``(barcode, timestamp, workflow_type)`` identifies the logical event;
    the client ``id`` is informational only.
    """

    id: Optional[str] = Field(default=None, max_length=64)
    barcode: str = Field(min_length=1, max_length=100)
    timestamp: int = Field(ge=0, description="Capture time, epoch milliseconds")
    workflow_type: ScanWorkflowType
    metadata: OfflineScanMetadata = Field(default_factory=OfflineScanMetadata)


class OfflineScanResult(BaseModel):
    event_id: Optional[str] = None
    barcode: str
    status: str = "accepted"
    duplicate: bool = False
    item_id: Optional[int] = None
    count_record_id: Optional[int] = None


class RejectedScan(BaseModel):
    event: Dict[str, Any]
    reason: str
    error: str


class OfflineScanBatchRequest(BaseModel):
    """Batch of raw events; each is validated on its own so one bad event
    is rejected without failing the rest."""

    events: List[Dict[str, Any]] = Field(max_length=500)


class OfflineScanBatchResponse(BaseModel):
    accepted: List[OfflineScanResult]
    rejected: List[RejectedScan]
    total_processed: int
