"""
Offline Sync Models - server-side log of scans captured while disconnected.

A client may deliver the same scan more than once (at-least-once sync), so
each scan is keyed by (tenant, barcode, capture timestamp, workflow) and a
redelivery is recognised as a duplicate instead of applied again.
"""

import enum

from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
)
from sqlalchemy.sql import func

from stockcount.db.base import Base


class ScanWorkflowType(str, enum.Enum):
    """Workflow a scan was captured under."""
    INVENTORY_COUNT = "inventory_count"
    STOCK_UPDATE = "stock_update"
    RECEIVING = "receiving"
    LOOKUP = "lookup"


class OfflineScanLog(Base):
    """Raw record of an offline scan accepted by the server."""
    __tablename__ = "offline_scan_logs"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "barcode", "captured_at_ms", "workflow_type",
            name="uq_offline_scan_event",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    client_event_id = Column(String(64), nullable=True)

    barcode = Column(String(100), nullable=False, index=True)
    captured_at_ms = Column(BigInteger, nullable=False)  # client epoch millis
    workflow_type = Column(String(30), nullable=False)
    payload = Column(JSON, nullable=True)

    # Resolution (inventory_count scans applied to a session)
    item_id = Column(Integer, ForeignKey("inventory_items.id", ondelete="SET NULL"), nullable=True)
    count_record_id = Column(Integer, ForeignKey("count_records.id", ondelete="SET NULL"), nullable=True)

    synced_by = Column(Integer, nullable=True)
    synced_at = Column(DateTime(timezone=True), server_default=func.now())
