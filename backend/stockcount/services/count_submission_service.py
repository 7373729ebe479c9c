"""Count submission - the path a single count takes from input to record.

resolve item/container/location -> normalise with the workflow handler ->
evaluate the weight reading -> apply the verdict -> persist.

Critical findings never persist. Error findings persist only with an explicit
``anomaly_override``. Warnings never block.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from stockcount.models.container import ContainerInstance
from stockcount.models.inventory import CountRecord
from stockcount.schemas.count import CountSubmitRequest
from stockcount.services.anomaly_detection_service import (
    AnomalyDetectionService,
    AnomalyVerdict,
)
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.counting_methods import NormalizedCount, normalize

logger = logging.getLogger("inventory")


@dataclass
class SubmissionResult:
    record: Optional[CountRecord]
    verdict: AnomalyVerdict
    normalized: NormalizedCount
    audit: Optional[Dict[str, Any]] = None
    created: bool = False
    derived: Dict[str, Any] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return self.record is None

    def to_dict(self) -> Dict[str, Any]:
        data = self.verdict.to_dict()
        data.pop("has_anomaly")
        data["record"] = self.record
        data["derived"] = self.derived
        return data


class CountSubmissionService:
    """Orchestrates one count submission for a tenant."""

    def __init__(self, db: Session, detector: Optional[AnomalyDetectionService] = None):
        self.db = db
        self.detector = detector or AnomalyDetectionService(db)

    def submit(
        self,
        tenant_id: int,
        user_id: int,
        request: CountSubmitRequest,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        now = now or datetime.now(timezone.utc)
        data = request.input

        item = CountSessionService.get_item(self.db, tenant_id, request.item_id)
        container: Optional[ContainerInstance] = None
        container_id = getattr(data, "container_instance_id", None)
        if container_id is not None:
            container = self.detector.get_container(tenant_id, container_id)
        if request.location_id is not None:
            CountSessionService.get_location(self.db, tenant_id, request.location_id)

        normalized = normalize(
            item,
            data,
            container_tare_grams=container.tare_weight_grams if container else None,
            now=now,
        )

        verdict = AnomalyVerdict()
        if normalized.reading is not None:
            verdict = self.detector.evaluate_reading(
                tenant_id,
                normalized.reading.measured_weight_grams,
                item_id=item.id,
                fallback_tare_grams=normalized.reading.fallback_tare_grams,
                container=container,
            )

        audit = None
        if verdict.has_anomaly:
            audit = {
                "tenant_id": tenant_id,
                "findings": [a.to_dict() for a in verdict.anomalies],
                "measured_weight_grams": normalized.reading.measured_weight_grams,
                "inventory_item_id": item.id,
                "container_instance_id": container.id if container else None,
                "session_id": request.session_id,
                "user_id": user_id,
                "context": "count",
            }

        result = SubmissionResult(
            record=None,
            verdict=verdict,
            normalized=normalized,
            audit=audit,
            derived=normalized.derived,
        )

        if not verdict.can_proceed:
            logger.info("Count blocked by critical anomaly: item=%s", item.id)
            return result
        if verdict.has_error and not request.anomaly_override:
            logger.info("Count requires anomaly override: item=%s", item.id)
            return result

        metadata: Dict[str, Any] = dict(normalized.record_fields)
        metadata.update(
            counting_workflow=normalized.counting_workflow.value,
            raw_inputs=normalized.raw_inputs,
            counted_at=normalized.counted_at,
            notes=request.notes,
            has_anomalies=verdict.has_anomaly,
            anomaly_types=[a.type.value for a in verdict.anomalies] or None,
            anomaly_override=request.anomaly_override,
            anomaly_notes=request.anomaly_notes,
        )
        if container is not None:
            metadata["container_instance_id"] = container.id
            container.times_used = (container.times_used or 0) + 1
            container.last_used_at = now

        if request.session_id is not None:
            record, created = CountSessionService.record_count(
                self.db,
                tenant_id=tenant_id,
                session_id=request.session_id,
                item_id=item.id,
                quantity=normalized.counted_quantity,
                counting_method=normalized.counting_method,
                user_id=user_id,
                location_id=request.location_id,
                unit=normalized.unit,
                metadata=metadata,
            )
        else:
            record = CountRecord(
                tenant_id=tenant_id,
                item_id=item.id,
                location_id=request.location_id,
                quantity=normalized.counted_quantity,
                unit=normalized.unit,
                counting_method=normalized.counting_method,
                counted_by=user_id,
                **metadata,
            )
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
            created = True

        result.record = record
        result.created = created
        return result
