"""Audit logging service.

Provides functions to write audit log entries for session lifecycle changes
and for weight anomaly detections. Audit writes must never fail the caller:
errors are logged and swallowed.

When called without an explicit ``db`` session (e.g. from a FastAPI
background task after the response was sent), the writer opens its own
short-lived session from ``session_factory``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session

from stockcount.db.session import SessionLocal
from stockcount.models.anomaly import WeightAnomalyDetection
from stockcount.models.audit import AuditLogEntry

logger = logging.getLogger("audit")


def log_action(
    action: str,
    entity_type: str = "",
    entity_id: str = "",
    tenant_id: Optional[int] = None,
    user_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
    db: Optional[Session] = None,
) -> None:
    """Write an audit log entry.

    Args:
        action: The action performed (create, pause, resume, commit, ...)
        entity_type: Type of entity affected (count_session, ...)
        entity_id: ID of the affected entity
        tenant_id: Tenant the action belongs to
        user_id: ID of the user performing the action
        details: Additional details (from/to state, counts, ...)
        db: Optional existing DB session. If None, creates a new one.
    """
    own_session = db is None
    if own_session:
        db = SessionLocal()

    try:
        entry = AuditLogEntry(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else "",
            details=details or {},
            created_at=datetime.now(timezone.utc),
        )
        if own_session:
            db.add(entry)
            db.commit()
        else:
            # Isolate the audit row so a failure cannot poison the caller's transaction
            with db.begin_nested():
                db.add(entry)
    except Exception:
        logger.exception("Failed to write audit log entry")
        if own_session:
            db.rollback()
    finally:
        if own_session:
            db.close()


def log_anomaly_detection(
    tenant_id: int,
    findings: List[dict[str, Any]],
    measured_weight_grams: Optional[float],
    inventory_item_id: Optional[int] = None,
    container_instance_id: Optional[int] = None,
    session_id: Optional[int] = None,
    user_id: Optional[int] = None,
    context: str = "count",
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Record a weight anomaly detection keyed by the first finding.

    Runs after the response has been sent; any failure is logged and
    swallowed so it can never reach the user.
    """
    if not findings:
        return

    first = findings[0]
    db = None
    try:
        db = session_factory()
        db.add(WeightAnomalyDetection(
            tenant_id=tenant_id,
            detection_context=context,
            inventory_item_id=inventory_item_id,
            container_instance_id=container_instance_id,
            session_id=session_id,
            anomaly_type=first["type"],
            severity=first["severity"],
            measured_weight_grams=measured_weight_grams,
            confidence_score=first.get("confidence_score"),
            findings=findings,
            created_by=user_id,
        ))
        db.commit()
        logger.info(
            "Weight anomaly logged: tenant=%s item=%s type=%s severity=%s findings=%s",
            tenant_id, inventory_item_id, first["type"], first["severity"], len(findings),
        )
    except Exception:
        logger.exception("Failed to write weight anomaly audit entry")
        if db is not None:
            db.rollback()
    finally:
        if db is not None:
            db.close()
