"""Counting method handlers.

One handler per counting workflow. Each turns workflow-specific input into a
``NormalizedCount``; none of them touch the database. Weight results are
never clamped here (a sub-tare reading is left for the anomaly detector),
with the single exception of the bottle partial equivalent which is floored
at zero for display while the raw reading still goes to the detector.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional

from stockcount.core.config import settings
from stockcount.core.exceptions import ValidationError
from stockcount.models.inventory import CountMethod
from stockcount.models.inventory_item import CountingWorkflow, InventoryItem
from stockcount.schemas.count import (
    BatchWeightInput,
    BottleHybridInput,
    ContainerWeightInput,
    KegWeightInput,
    UnitCountInput,
)
from stockcount.services.anomaly_detection_service import WeightReading

QUANTITY_PLACES = Decimal("0.0001")


@dataclass
class NormalizedCount:
    """Canonical count produced by every handler."""

    item_id: int
    counting_workflow: CountingWorkflow
    counting_method: CountMethod
    counted_quantity: Decimal
    unit: str
    raw_inputs: Dict[str, Any]
    counted_at: datetime
    reading: Optional[WeightReading] = None
    record_fields: Dict[str, Any] = field(default_factory=dict)
    derived: Dict[str, Any] = field(default_factory=dict)


def _quantize(value) -> Decimal:
    return Decimal(str(value)).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def count_units(item: InventoryItem, data: UnitCountInput, now: Optional[datetime] = None) -> NormalizedCount:
    if item.requires_container:
        raise ValidationError(
            f"Item {item.id} requires a container and cannot be counted by units",
            item_id=item.id,
        )
    quantity = data.quantity
    if not quantity.is_finite():
        raise ValidationError("quantity must be a finite number")
    if quantity < 0:
        raise ValidationError("quantity must be non-negative", quantity=str(quantity))
    if not item.supports_partial_units and quantity != quantity.to_integral_value():
        raise ValidationError(
            f"Item {item.id} does not support partial units",
            quantity=str(quantity),
        )
    return NormalizedCount(
        item_id=item.id,
        counting_workflow=CountingWorkflow.UNIT_COUNT,
        counting_method=CountMethod.MANUAL,
        counted_quantity=_quantize(quantity),
        unit=item.unit,
        raw_inputs={"quantity": str(quantity)},
        counted_at=_now(now),
    )


def count_container_weight(
    item: InventoryItem,
    data: ContainerWeightInput,
    container_tare_grams: Optional[float] = None,
    now: Optional[datetime] = None,
) -> NormalizedCount:
    """Quantity is ``(gross - tare) / unit_weight``; net kg without a unit weight."""
    if item.requires_container and container_tare_grams is None and data.tare_weight_grams is None:
        raise ValidationError(
            f"Item {item.id} requires a registered container or a tare weight",
            item_id=item.id,
        )
    if container_tare_grams is not None:
        tare = container_tare_grams
    else:
        tare = data.tare_weight_grams or 0.0
    net = data.gross_weight_grams - tare
    unit_weight = data.unit_weight_grams or item.typical_unit_weight_grams

    if unit_weight:
        quantity = net / unit_weight
        unit = item.unit
    else:
        quantity = net / 1000
        unit = "kg"

    return NormalizedCount(
        item_id=item.id,
        counting_workflow=CountingWorkflow.CONTAINER_WEIGHT,
        counting_method=CountMethod.WEIGHT,
        counted_quantity=_quantize(quantity),
        unit=unit,
        raw_inputs=data.model_dump(mode="json"),
        counted_at=_now(now),
        reading=WeightReading(data.gross_weight_grams, data.tare_weight_grams),
        record_fields={
            "container_instance_id": data.container_instance_id,
            "gross_weight_grams": data.gross_weight_grams,
            "tare_weight_grams": tare,
            "net_weight_grams": net,
            "unit_weight_grams": unit_weight,
        },
    )


def count_bottles(item: InventoryItem, data: BottleHybridInput, now: Optional[datetime] = None) -> NormalizedCount:
    """Full bottles plus the equivalent of the weighed open bottles."""
    full = item.full_bottle_weight_grams
    empty = item.empty_bottle_weight_grams
    if full is None or empty is None:
        raise ValidationError(
            f"Item {item.id} has no full/empty bottle weights configured",
            item_id=item.id,
        )
    if full <= empty:
        raise ValidationError(
            f"Item {item.id} full bottle weight must exceed empty bottle weight",
            item_id=item.id,
        )

    partial_weight = data.partial_bottles_weight_grams
    reading = None
    partial_equivalent = 0.0
    if partial_weight:
        partial_equivalent = max(0.0, (partial_weight - empty) / (full - empty))
        reading = WeightReading(partial_weight, empty)

    total = data.full_bottles_count + partial_equivalent
    return NormalizedCount(
        item_id=item.id,
        counting_workflow=CountingWorkflow.BOTTLE_HYBRID,
        counting_method=CountMethod.HYBRID,
        counted_quantity=_quantize(total),
        unit=item.unit,
        raw_inputs=data.model_dump(mode="json"),
        counted_at=_now(now),
        reading=reading,
        record_fields={
            "full_bottles_count": data.full_bottles_count,
            "partial_bottles_weight_grams": partial_weight,
            "partial_bottles_equivalent": round(partial_equivalent, 4),
            "gross_weight_grams": partial_weight or None,
            "tare_weight_grams": empty if reading else None,
        },
    )


def keg_freshness(days_since_tap: int, freshness_days: int) -> str:
    """Classify a tapped keg by the share of its freshness window used."""
    if days_since_tap <= 0:
        return "fresh"
    ratio = days_since_tap / freshness_days
    if ratio <= 0.3:
        return "fresh"
    if ratio <= 0.7:
        return "good"
    if ratio <= 1.0:
        return "declining"
    return "expired"


def count_keg(
    item: InventoryItem,
    data: KegWeightInput,
    now: Optional[datetime] = None,
) -> NormalizedCount:
    counted_at = _now(now)
    empty = item.empty_keg_weight_grams or settings.default_keg_empty_weight_grams
    capacity = item.keg_volume_liters or settings.default_keg_volume_liters
    freshness_days = item.keg_freshness_days or settings.default_keg_freshness_days

    net = data.gross_weight_grams - empty
    liters = net / settings.keg_density_grams_per_litre
    remaining_percent = min(100.0, liters / capacity * 100)

    days_since_tap = 0
    if data.tapped_date:
        days_since_tap = (counted_at.date() - data.tapped_date).days

    return NormalizedCount(
        item_id=item.id,
        counting_workflow=CountingWorkflow.KEG_WEIGHT,
        counting_method=CountMethod.WEIGHT,
        counted_quantity=_quantize(liters),
        unit="L",
        raw_inputs=data.model_dump(mode="json"),
        counted_at=counted_at,
        reading=WeightReading(data.gross_weight_grams, empty),
        record_fields={
            "gross_weight_grams": data.gross_weight_grams,
            "tare_weight_grams": empty,
            "net_weight_grams": net,
            "keg_tapped_date": data.tapped_date,
            "keg_temperature_celsius": data.temperature_celsius,
        },
        derived={
            "remaining_liters": round(liters, 2),
            "remaining_percent": round(remaining_percent, 1),
            "days_since_tap": days_since_tap,
            "freshness_status": keg_freshness(days_since_tap, freshness_days),
            "estimated_days_remaining": max(0, freshness_days - days_since_tap),
        },
    )


def count_batch(item: InventoryItem, data: BatchWeightInput, now: Optional[datetime] = None) -> NormalizedCount:
    counted_at = _now(now)
    tare = data.tare_weight_grams or 0.0
    net = data.gross_weight_grams - tare

    use_by = data.use_by_date
    if use_by is None and item.is_batch_tracked and item.batch_use_by_days:
        use_by = counted_at.date() + timedelta(days=item.batch_use_by_days)

    return NormalizedCount(
        item_id=item.id,
        counting_workflow=CountingWorkflow.BATCH_WEIGHT,
        counting_method=CountMethod.WEIGHT,
        counted_quantity=_quantize(net / 1000),
        unit="kg",
        raw_inputs=data.model_dump(mode="json"),
        counted_at=counted_at,
        reading=WeightReading(data.gross_weight_grams, data.tare_weight_grams),
        record_fields={
            "gross_weight_grams": data.gross_weight_grams,
            "tare_weight_grams": tare,
            "net_weight_grams": net,
            "batch_code": data.batch_code,
            "use_by_date": use_by,
        },
    )


_HANDLERS: Dict[str, Callable[..., NormalizedCount]] = {
    CountingWorkflow.UNIT_COUNT.value: count_units,
    CountingWorkflow.CONTAINER_WEIGHT.value: count_container_weight,
    CountingWorkflow.BOTTLE_HYBRID.value: count_bottles,
    CountingWorkflow.KEG_WEIGHT.value: count_keg,
    CountingWorkflow.BATCH_WEIGHT.value: count_batch,
}


def normalize(
    item: InventoryItem,
    data,
    container_tare_grams: Optional[float] = None,
    now: Optional[datetime] = None,
) -> NormalizedCount:
    """Dispatch ``data`` to the handler for its workflow."""
    handler = _HANDLERS.get(data.workflow)
    if handler is None:
        raise ValidationError(f"Unknown counting workflow: {data.workflow}")
    if handler is count_container_weight:
        return handler(item, data, container_tare_grams=container_tare_grams, now=now)
    return handler(item, data, now=now)
