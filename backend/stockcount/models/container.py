"""Container models: registered tare weights for weight-based counting."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockcount.db.base import Base, TimestampMixin


class ContainerType(Base, TimestampMixin):
    """A kind of container (e.g. 4L Cambro) with its nominal tare and capacity."""

    __tablename__ = "container_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tare_weight_grams: Mapped[float] = mapped_column(Float, nullable=False)
    max_capacity_ml: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    instances: Mapped[list["ContainerInstance"]] = relationship(
        "ContainerInstance", back_populates="container_type"
    )


class ContainerInstance(Base, TimestampMixin):
    """A physical, barcode-labelled container with its own verified tare."""

    __tablename__ = "container_instances"
    __table_args__ = (
        UniqueConstraint("tenant_id", "container_barcode", name="uq_container_tenant_barcode"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    container_barcode: Mapped[str] = mapped_column(String(50), nullable=False)
    container_type_id: Mapped[int] = mapped_column(
        ForeignKey("container_types.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    tare_weight_grams: Mapped[float] = mapped_column(Float, nullable=False)
    times_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    container_type: Mapped["ContainerType"] = relationship("ContainerType", back_populates="instances")
