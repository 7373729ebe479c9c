"""Count session and count record models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Enum as SQLEnum, Float, ForeignKey, Index, Integer,
    Numeric, String, UniqueConstraint, func, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockcount.db.base import Base, TimestampMixin


class SessionStatus(str, Enum):
    """Lifecycle status of a count session."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


OPEN_STATUSES = (SessionStatus.ACTIVE, SessionStatus.PAUSED)


class CountMethod(str, Enum):
    """Method tag recorded on each count."""

    MANUAL = "manual"
    WEIGHT = "weight"
    HYBRID = "hybrid"
    BARCODE = "barcode"


# Methods whose records carry a gross weight usable as outlier history
WEIGHT_BASED_METHODS = (CountMethod.WEIGHT, CountMethod.HYBRID)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class CountSession(Base, TimestampMixin):
    """One counting pass over one location for one tenant.

    Never deleted. Mutated only through CountSessionService.
    """

    __tablename__ = "count_sessions"
    __table_args__ = (
        # At most one active-or-paused session per (tenant, location)
        Index(
            "uq_count_session_open_location",
            "tenant_id",
            "location_id",
            unique=True,
            sqlite_where=text("status IN ('active', 'paused')"),
            postgresql_where=text("status IN ('active', 'paused')"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(SessionStatus, name="count_session_status", values_callable=_enum_values),
        default=SessionStatus.ACTIVE,
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    counted_items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    location: Mapped["Location"] = relationship("Location", back_populates="count_sessions")
    records: Mapped[list["CountRecord"]] = relationship("CountRecord", back_populates="session")

    @property
    def progress_percentage(self) -> int:
        if not self.total_items_count:
            return 0
        return round(100 * self.counted_items_count / self.total_items_count)


class CountRecord(Base, TimestampMixin):
    """One measurement for one item, optionally within a session."""

    __tablename__ = "count_records"
    __table_args__ = (
        UniqueConstraint("session_id", "item_id", name="uq_count_record_session_item"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("count_sessions.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    location_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    counting_method: Mapped[CountMethod] = mapped_column(
        SQLEnum(CountMethod, name="count_method", values_callable=_enum_values),
        default=CountMethod.MANUAL,
        nullable=False,
    )
    counting_workflow: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    counted_by: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Weight data
    container_instance_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("container_instances.id", ondelete="SET NULL"), nullable=True
    )
    gross_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tare_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    net_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    unit_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Bottle data
    full_bottles_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    partial_bottles_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    partial_bottles_equivalent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Keg data
    keg_tapped_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    keg_temperature_celsius: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Batch data
    batch_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    use_by_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    raw_inputs: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Anomaly summary
    has_anomalies: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    anomaly_types: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    anomaly_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    anomaly_notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    session: Mapped[Optional["CountSession"]] = relationship("CountSession", back_populates="records")
    item: Mapped["InventoryItem"] = relationship("InventoryItem")


# Forward references
from stockcount.models.location import Location
from stockcount.models.inventory_item import InventoryItem
