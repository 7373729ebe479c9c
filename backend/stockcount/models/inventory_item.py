"""Inventory item model - a countable SKU with its physical parameters."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, Float, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stockcount.db.base import Base, TimestampMixin


class CountingWorkflow(str, Enum):
    """Input modality used to quantify an item."""

    UNIT_COUNT = "unit_count"  # Manual counting (traditional)
    CONTAINER_WEIGHT = "container_weight"  # Bulk items in labelled containers
    BOTTLE_HYBRID = "bottle_hybrid"  # Wine/spirits: full bottles + weighed partials
    KEG_WEIGHT = "keg_weight"  # Beer kegs, always weighed
    BATCH_WEIGHT = "batch_weight"  # In-house prep with use-by dates


class InventoryItem(Base, TimestampMixin):
    """A countable item owned by a tenant. Read-only during a count."""

    __tablename__ = "inventory_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    brand: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    unit: Mapped[str] = mapped_column(String(20), default="pcs", nullable=False)  # pcs, kg, L, bottles
    pack_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    par_level: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    counting_workflow: Mapped[CountingWorkflow] = mapped_column(
        SQLEnum(CountingWorkflow, name="counting_workflow", values_callable=lambda e: [m.value for m in e]), default=CountingWorkflow.UNIT_COUNT, nullable=False
    )
    supports_partial_units: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_container: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_batch_tracked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Container / weight counting
    typical_unit_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Bottles
    bottle_volume_ml: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    full_bottle_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    empty_bottle_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Kegs
    keg_volume_liters: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    empty_keg_weight_grams: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    keg_freshness_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Batches
    batch_use_by_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
