"""Count submission and weight validation routes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, Response, status
from sqlalchemy.orm import sessionmaker

from stockcount.core.rate_limit import limiter
from stockcount.core.rbac import CurrentUser, RequireManager
from stockcount.db.session import DbSession
from stockcount.models.anomaly import WeightAnomalyDetection
from stockcount.schemas.count import (
    AnomalyDetectionResponse,
    CountSubmitRequest,
    CountSubmitResponse,
    WeightValidationRequest,
    WeightValidationResponse,
)
from stockcount.services import audit_service
from stockcount.services.anomaly_detection_service import AnomalyDetectionService
from stockcount.services.count_session_service import CountSessionService
from stockcount.services.count_submission_service import CountSubmissionService

logger = logging.getLogger("inventory")

router = APIRouter()


def _schedule_anomaly_audit(background_tasks: BackgroundTasks, db, audit: Optional[dict]) -> None:
    """Write the anomaly audit after the response is sent."""
    if not audit:
        return
    background_tasks.add_task(
        audit_service.log_anomaly_detection,
        **audit,
        session_factory=sessionmaker(bind=db.get_bind()),
    )


@router.post("/submit", response_model=CountSubmitResponse)
@limiter.limit("60/minute")
def submit_count(
    request: Request,
    response: Response,
    payload: CountSubmitRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    current_user: CurrentUser,
):
    """Submit one count.

    Critical anomalies block with 422 and no record. Error-severity anomalies
    return no record and ``require_confirmation`` until resubmitted with
    ``anomaly_override``. Warnings are reported and the count is recorded.
    """
    result = CountSubmissionService(db).submit(
        tenant_id=current_user.tenant_id,
        user_id=current_user.user_id,
        request=payload,
    )
    _schedule_anomaly_audit(background_tasks, db, result.audit)
    if not result.verdict.can_proceed:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return result.to_dict()


@router.post("/validate", response_model=WeightValidationResponse)
@limiter.limit("120/minute")
def validate_weight(
    request: Request,
    payload: WeightValidationRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    current_user: CurrentUser,
):
    """Evaluate a weight reading against the anomaly rules without recording it."""
    tenant_id = current_user.tenant_id
    detector = AnomalyDetectionService(db)

    if payload.inventory_item_id is not None:
        CountSessionService.get_item(db, tenant_id, payload.inventory_item_id)
    container = None
    if payload.container_instance_id is not None:
        container = detector.get_container(tenant_id, payload.container_instance_id)

    verdict = detector.evaluate_reading(
        tenant_id,
        payload.measured_weight_grams,
        item_id=payload.inventory_item_id,
        fallback_tare_grams=payload.tare_weight_grams,
        container=container,
    )
    if verdict.has_anomaly:
        _schedule_anomaly_audit(background_tasks, db, {
            "tenant_id": tenant_id,
            "findings": [a.to_dict() for a in verdict.anomalies],
            "measured_weight_grams": payload.measured_weight_grams,
            "inventory_item_id": payload.inventory_item_id,
            "container_instance_id": payload.container_instance_id,
            "user_id": current_user.user_id,
            "context": "validate",
        })
    return verdict.to_dict()


@router.get("/anomalies", response_model=List[AnomalyDetectionResponse])
@limiter.limit("30/minute")
def list_anomalies(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    inventory_item_id: Optional[int] = Query(None),
    severity: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    """Recent anomaly detections for review (manager and above)."""
    query = db.query(WeightAnomalyDetection).filter(
        WeightAnomalyDetection.tenant_id == current_user.tenant_id
    )
    if inventory_item_id is not None:
        query = query.filter(WeightAnomalyDetection.inventory_item_id == inventory_item_id)
    if severity:
        query = query.filter(WeightAnomalyDetection.severity == severity)
    return (
        query.order_by(WeightAnomalyDetection.created_at.desc(), WeightAnomalyDetection.id.desc())
        .limit(limit)
        .all()
    )
