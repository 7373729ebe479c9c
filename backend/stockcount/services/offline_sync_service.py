"""Server-side acceptance of offline-captured scans.

Delivery from devices is at-least-once, so acceptance is idempotent: each
event is keyed by (tenant, barcode, capture timestamp, workflow) in
``offline_scan_logs``. A redelivered event is reported as accepted with
``duplicate=True`` and has no further effect. Inventory-count events that
carry a session and a quantity are validated by the unit-count handler and
applied through the session state machine as an upsert keyed by
(session, item).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pydantic
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stockcount.core.exceptions import CountingError, NotFoundError, ValidationError
from stockcount.models.inventory import CountMethod
from stockcount.models.inventory_item import InventoryItem
from stockcount.models.offline_sync import OfflineScanLog, ScanWorkflowType
from stockcount.schemas.count import UnitCountInput
from stockcount.schemas.sync import OfflineScanEventIn, OfflineScanResult
from stockcount.services import counting_methods
from stockcount.services.count_session_service import CountSessionService

logger = logging.getLogger("sync")


class OfflineSyncService:
    """Applies offline scan events for one tenant."""

    def __init__(self, db: Session):
        self.db = db

    def _find_logged(self, tenant_id: int, event: OfflineScanEventIn) -> Optional[OfflineScanLog]:
        return (
            self.db.query(OfflineScanLog)
            .filter(
                OfflineScanLog.tenant_id == tenant_id,
                OfflineScanLog.barcode == event.barcode,
                OfflineScanLog.captured_at_ms == event.timestamp,
                OfflineScanLog.workflow_type == event.workflow_type.value,
            )
            .first()
        )

    def _find_item(self, tenant_id: int, barcode: str) -> Optional[InventoryItem]:
        return (
            self.db.query(InventoryItem)
            .filter(InventoryItem.tenant_id == tenant_id, InventoryItem.barcode == barcode)
            .first()
        )

    @staticmethod
    def _duplicate(log: OfflineScanLog, event: OfflineScanEventIn) -> OfflineScanResult:
        return OfflineScanResult(
            event_id=event.id,
            barcode=event.barcode,
            duplicate=True,
            item_id=log.item_id,
            count_record_id=log.count_record_id,
        )

    def _accept(self, tenant_id: int, user_id: int, event: OfflineScanEventIn) -> OfflineScanResult:
        logged = self._find_logged(tenant_id, event)
        if logged is not None:
            return self._duplicate(logged, event)

        meta = event.metadata
        item = self._find_item(tenant_id, event.barcode)
        record_id = None

        applies_count = (
            event.workflow_type == ScanWorkflowType.INVENTORY_COUNT
            and meta.session_id is not None
            and meta.quantity is not None
        )
        if applies_count:
            if item is None:
                raise NotFoundError("Item with barcode", event.barcode)
            normalized = counting_methods.count_units(
                item,
                UnitCountInput(quantity=meta.quantity),
                now=datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc),
            )
            record, _ = CountSessionService.record_count(
                self.db,
                tenant_id=tenant_id,
                session_id=meta.session_id,
                item_id=item.id,
                quantity=normalized.counted_quantity,
                counting_method=CountMethod.BARCODE,
                user_id=user_id,
                location_id=meta.location_id,
                unit=normalized.unit,
                metadata={
                    "notes": meta.notes,
                    "counting_workflow": normalized.counting_workflow.value,
                    "counted_at": normalized.counted_at,
                    "raw_inputs": event.model_dump(mode="json"),
                },
                commit=False,
            )
            record_id = record.id

        self.db.add(OfflineScanLog(
            tenant_id=tenant_id,
            client_event_id=event.id,
            barcode=event.barcode,
            captured_at_ms=event.timestamp,
            workflow_type=event.workflow_type.value,
            payload=event.model_dump(mode="json"),
            item_id=item.id if item else None,
            count_record_id=record_id,
            synced_by=user_id,
        ))
        self.db.flush()
        return OfflineScanResult(
            event_id=event.id,
            barcode=event.barcode,
            item_id=item.id if item else None,
            count_record_id=record_id,
        )

    def apply(self, tenant_id: int, user_id: int, event: OfflineScanEventIn) -> OfflineScanResult:
        """Apply one event inside a SAVEPOINT; the caller commits."""
        try:
            with self.db.begin_nested():
                return self._accept(tenant_id, user_id, event)
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            logged = self._find_logged(tenant_id, event)
            if logged is None:
                raise
            return self._duplicate(logged, event)

    def accept_one(self, tenant_id: int, user_id: int, event: OfflineScanEventIn) -> OfflineScanResult:
        result = self.apply(tenant_id, user_id, event)
        self.db.commit()
        logger.info(
            "Offline scan accepted: tenant=%s barcode=%s workflow=%s duplicate=%s",
            tenant_id, event.barcode, event.workflow_type.value, result.duplicate,
        )
        return result

    def accept_batch(self, tenant_id: int, user_id: int, raw_events: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Apply every event independently and report per-event outcomes."""
        accepted: List[OfflineScanResult] = []
        rejected: List[Dict[str, Any]] = []

        for raw in raw_events:
            try:
                event = OfflineScanEventIn.model_validate(raw)
            except pydantic.ValidationError as exc:
                rejected.append({
                    "event": raw,
                    "reason": "; ".join(err["msg"] for err in exc.errors()),
                    "error": ValidationError.code,
                })
                continue

            try:
                accepted.append(self.apply(tenant_id, user_id, event))
            except CountingError as exc:
                rejected.append({"event": raw, "reason": exc.message, "error": exc.code})
            except SQLAlchemyError:
                logger.exception("Failed to apply offline scan %s", event.barcode)
                rejected.append({"event": raw, "reason": "Storage error", "error": "transient_error"})

        self.db.commit()
        logger.info(
            "Offline batch processed: tenant=%s accepted=%s rejected=%s",
            tenant_id, len(accepted), len(rejected),
        )
        return {
            "accepted": accepted,
            "rejected": rejected,
            "total_processed": len(raw_events),
        }
