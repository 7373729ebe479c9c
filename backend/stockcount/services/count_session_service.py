"""Count session service - the server-side authority over counting sessions.

Lifecycle::

    active --pause--> paused --resume--> active
    active --commit--> completed
    paused --commit--> completed

``completed`` is terminal. Every mutation runs as one transaction: the
session row is locked (``SELECT ... FOR UPDATE`` where the backend supports
it) and the ``counted_items_count`` increment is a single SQL expression
guarded by the (session, item) unique key, so concurrent submissions for
different items cannot lose an increment or double-count one item.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockcount.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stockcount.models.inventory import (
    CountMethod,
    CountRecord,
    CountSession,
    OPEN_STATUSES,
    SessionStatus,
)
from stockcount.models.inventory_item import InventoryItem
from stockcount.models.location import Location
from stockcount.services import audit_service

logger = logging.getLogger("inventory")

# action -> (allowed source states, target state)
TRANSITIONS: Dict[str, Tuple[Tuple[SessionStatus, ...], SessionStatus]] = {
    "pause": ((SessionStatus.ACTIVE,), SessionStatus.PAUSED),
    "resume": ((SessionStatus.PAUSED,), SessionStatus.ACTIVE),
    "commit": ((SessionStatus.ACTIVE, SessionStatus.PAUSED), SessionStatus.COMPLETED),
}

# Cleared before a recount so nothing from the previous measurement survives
MEASUREMENT_DEFAULTS: Dict[str, Any] = {
    "counting_workflow": None,
    "notes": None,
    "container_instance_id": None,
    "gross_weight_grams": None,
    "tare_weight_grams": None,
    "net_weight_grams": None,
    "unit_weight_grams": None,
    "confidence_score": None,
    "full_bottles_count": None,
    "partial_bottles_weight_grams": None,
    "partial_bottles_equivalent": None,
    "keg_tapped_date": None,
    "keg_temperature_celsius": None,
    "batch_code": None,
    "use_by_date": None,
    "raw_inputs": None,
    "has_anomalies": False,
    "anomaly_types": None,
    "anomaly_override": False,
    "anomaly_notes": None,
}


@dataclass(frozen=True)
class SessionProgress:
    total: int
    completed: int
    remaining: int
    percentage: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_summary(session: CountSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "location_id": session.location_id,
        "user_id": session.user_id,
        "status": session.status.value,
        "started_at": session.started_at,
        "total_items_count": session.total_items_count,
        "counted_items_count": session.counted_items_count,
    }


class CountSessionService:
    """State machine and progress accounting for count sessions."""

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    @staticmethod
    def get_location(db: Session, tenant_id: int, location_id: int) -> Location:
        location = (
            db.query(Location)
            .filter(Location.id == location_id, Location.tenant_id == tenant_id)
            .first()
        )
        if not location:
            raise NotFoundError("Location", location_id)
        return location

    @staticmethod
    def get_item(db: Session, tenant_id: int, item_id: int) -> InventoryItem:
        item = (
            db.query(InventoryItem)
            .filter(InventoryItem.id == item_id, InventoryItem.tenant_id == tenant_id)
            .first()
        )
        if not item:
            raise NotFoundError("Item", item_id)
        return item

    @staticmethod
    def get(db: Session, tenant_id: int, session_id: int, for_update: bool = False) -> CountSession:
        query = db.query(CountSession).filter(
            CountSession.id == session_id,
            CountSession.tenant_id == tenant_id,
        )
        if for_update:
            query = query.with_for_update()
        session = query.first()
        if not session:
            raise NotFoundError("Session", session_id)
        return session

    @staticmethod
    def find_open(db: Session, tenant_id: int, location_id: int) -> Optional[CountSession]:
        return (
            db.query(CountSession)
            .filter(
                CountSession.tenant_id == tenant_id,
                CountSession.location_id == location_id,
                CountSession.status.in_(OPEN_STATUSES),
            )
            .first()
        )

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    @staticmethod
    def create(
        db: Session,
        tenant_id: int,
        location_id: int,
        user_id: int,
        notes: Optional[str] = None,
    ) -> CountSession:
        """Start a new session for a location.

        ``total_items_count`` is a snapshot of the tenant's active items at
        creation time and is not recomputed afterwards.

        Raises:
            NotFoundError: location missing or owned by another tenant.
            ConflictError: an active or paused session already exists; the
                existing session is attached under ``existing_session``.
        """
        CountSessionService.get_location(db, tenant_id, location_id)

        existing = CountSessionService.find_open(db, tenant_id, location_id)
        if existing:
            raise ConflictError(
                "An active session already exists for this location",
                conflicting=session_summary(existing),
                key="existing_session",
            )

        total_items = (
            db.query(func.count(InventoryItem.id))
            .filter(InventoryItem.tenant_id == tenant_id, InventoryItem.is_active.is_(True))
            .scalar()
        ) or 0

        session = CountSession(
            tenant_id=tenant_id,
            location_id=location_id,
            user_id=user_id,
            status=SessionStatus.ACTIVE,
            started_at=_utcnow(),
            total_items_count=total_items,
            counted_items_count=0,
            notes=notes,
        )
        try:
            db.add(session)
            db.flush()
        except IntegrityError:
            # Lost a race against another create for the same location
            db.rollback()
            existing = CountSessionService.find_open(db, tenant_id, location_id)
            raise ConflictError(
                "An active session already exists for this location",
                conflicting=session_summary(existing) if existing else None,
                key="existing_session",
            )

        audit_service.log_action(
            action="create",
            entity_type="count_session",
            entity_id=str(session.id),
            tenant_id=tenant_id,
            user_id=user_id,
            details={"location_id": location_id, "total_items_count": total_items},
            db=db,
        )
        db.commit()
        db.refresh(session)
        logger.info(
            "Count session %s created: tenant=%s location=%s items=%s",
            session.id, tenant_id, location_id, total_items,
        )
        return session

    # ------------------------------------------------------------------
    # record_count
    # ------------------------------------------------------------------
    @staticmethod
    def record_count(
        db: Session,
        tenant_id: int,
        session_id: int,
        item_id: int,
        quantity: Decimal,
        counting_method: CountMethod,
        user_id: int,
        location_id: Optional[int] = None,
        unit: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Tuple[CountRecord, bool]:
        """Record (or overwrite) the count for one item within a session.

        Returns ``(record, created)``. Only a net-new item advances
        ``counted_items_count``; a repeat count updates the existing record
        in place. Pass ``commit=False`` to leave the transaction to the
        caller (e.g. when applying inside a SAVEPOINT).
        """
        if quantity is None:
            raise ValidationError("quantity is required")

        session = CountSessionService.get(db, tenant_id, session_id, for_update=True)
        item = CountSessionService.get_item(db, tenant_id, item_id)
        if location_id is not None:
            CountSessionService.get_location(db, tenant_id, location_id)

        if session.status != SessionStatus.ACTIVE:
            raise InvalidStateError(session.status.value, "record_count")

        values: Dict[str, Any] = dict(metadata or {})
        values.update(
            quantity=quantity,
            unit=unit or item.unit,
            counting_method=counting_method,
            location_id=location_id if location_id is not None else session.location_id,
            counted_by=user_id,
            counted_at=values.get("counted_at") or _utcnow(),
        )

        record = CountSessionService._find_record(db, session.id, item.id)
        created = False
        if record is not None:
            CountSessionService._apply(record, {**MEASUREMENT_DEFAULTS, **values})
        else:
            record = CountRecord(tenant_id=tenant_id, session_id=session.id, item_id=item.id)
            CountSessionService._apply(record, values)
            try:
                with db.begin_nested():
                    db.add(record)
                    db.flush()
            except IntegrityError:
                # Another writer inserted this (session, item) first
                record = CountSessionService._find_record(db, session.id, item.id)
                if record is None:
                    raise
                CountSessionService._apply(record, {**MEASUREMENT_DEFAULTS, **values})
            else:
                created = True
                result = db.execute(
                    update(CountSession)
                    .where(
                        CountSession.id == session.id,
                        CountSession.counted_items_count < CountSession.total_items_count,
                    )
                    .values(counted_items_count=CountSession.counted_items_count + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    logger.warning(
                        "Session %s already at total_items_count=%s; counted not incremented",
                        session.id, session.total_items_count,
                    )

        db.flush()
        if commit:
            db.commit()
            db.refresh(record)
        db.expire(session, ["counted_items_count"])
        logger.info(
            "Count recorded: session=%s item=%s quantity=%s method=%s new=%s",
            session.id, item.id, quantity, counting_method.value, created,
        )
        return record, created

    @staticmethod
    def _find_record(db: Session, session_id: int, item_id: int) -> Optional[CountRecord]:
        return (
            db.query(CountRecord)
            .filter(CountRecord.session_id == session_id, CountRecord.item_id == item_id)
            .first()
        )

    @staticmethod
    def _apply(record: CountRecord, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            setattr(record, key, value)

    # ------------------------------------------------------------------
    # transition
    # ------------------------------------------------------------------
    @staticmethod
    def transition(
        db: Session,
        tenant_id: int,
        session_id: int,
        action: str,
        user_id: Optional[int] = None,
    ) -> CountSession:
        """Apply ``pause``, ``resume`` or ``commit`` to a session.

        Raises:
            ValidationError: unknown action.
            InvalidStateError: the action is not allowed from the current
                state, including a second ``commit``.
        """
        if action not in TRANSITIONS:
            raise ValidationError(
                f"Unknown action '{action}'",
                allowed_actions=sorted(TRANSITIONS),
            )
        allowed_from, target = TRANSITIONS[action]

        session = CountSessionService.get(db, tenant_id, session_id, for_update=True)
        previous = session.status
        if previous not in allowed_from:
            raise InvalidStateError(previous.value, action)

        now = _utcnow()
        session.status = target
        if action == "pause":
            session.paused_at = now
        elif action == "resume":
            session.paused_at = None
        else:
            session.completed_at = now
        session.updated_at = now

        audit_service.log_action(
            action=action,
            entity_type="count_session",
            entity_id=str(session.id),
            tenant_id=tenant_id,
            user_id=user_id,
            details={"from": previous.value, "to": target.value},
            db=db,
        )
        db.commit()
        db.refresh(session)
        logger.info(
            "Count session %s %s: %s -> %s", session.id, action, previous.value, target.value
        )
        return session

    # ------------------------------------------------------------------
    # read models
    # ------------------------------------------------------------------
    @staticmethod
    def progress(session: CountSession) -> SessionProgress:
        total = session.total_items_count or 0
        completed = session.counted_items_count or 0
        percentage = round(100 * completed / total) if total else 0
        return SessionProgress(
            total=total,
            completed=completed,
            remaining=total - completed,
            percentage=percentage,
        )

    @staticmethod
    def list_sessions(
        db: Session,
        tenant_id: int,
        location_id: int,
        status: str = "active",
    ) -> List[CountSession]:
        query = db.query(CountSession).filter(
            CountSession.tenant_id == tenant_id,
            CountSession.location_id == location_id,
        )
        if status != "all":
            try:
                query = query.filter(CountSession.status == SessionStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown session status '{status}'")
        return query.order_by(CountSession.started_at.desc(), CountSession.id.desc()).all()

    @staticmethod
    def detail(db: Session, tenant_id: int, session_id: int) -> Dict[str, Any]:
        """Session plus its counted records and the items still to count."""
        session = CountSessionService.get(db, tenant_id, session_id)

        completed_items = (
            db.query(CountRecord)
            .filter(CountRecord.session_id == session.id)
            .order_by(CountRecord.counted_at.desc())
            .all()
        )
        counted_ids = db.query(CountRecord.item_id).filter(CountRecord.session_id == session.id)
        pending_items = (
            db.query(InventoryItem)
            .filter(
                InventoryItem.tenant_id == tenant_id,
                InventoryItem.is_active.is_(True),
                InventoryItem.id.notin_(counted_ids),
            )
            .order_by(InventoryItem.name)
            .all()
        )
        return {
            "session": session,
            "completed_items": completed_items,
            "pending_items": pending_items,
            "progress": CountSessionService.progress(session),
        }
