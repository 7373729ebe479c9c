"""Tests for the counting workflow handlers and the keypad parser."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from stockcount.core.exceptions import ValidationError
from stockcount.models.inventory import CountMethod
from stockcount.models.inventory_item import CountingWorkflow, InventoryItem
from stockcount.schemas.count import (
    BatchWeightInput,
    BottleHybridInput,
    ContainerWeightInput,
    CountInput,
    KegWeightInput,
    UnitCountInput,
)
from stockcount.services.counting_methods import keg_freshness, normalize
from stockcount.services.keypad import KeypadBuffer

NOW = datetime(2026, 3, 10, 18, 30, tzinfo=timezone.utc)


def _item(**kwargs) -> InventoryItem:
    defaults = dict(
        id=1, tenant_id=1, name="Item", unit="pcs",
        supports_partial_units=False, requires_container=False, is_batch_tracked=False,
    )
    defaults.update(kwargs)
    return InventoryItem(**defaults)


class TestCountInputUnion:

    def test_discriminates_on_workflow(self):
        adapter = TypeAdapter(CountInput)
        parsed = adapter.validate_python({"workflow": "keg_weight", "gross_weight_grams": 40000})
        assert isinstance(parsed, KegWeightInput)

    def test_rejects_unknown_workflow(self):
        with pytest.raises(PydanticValidationError):
            TypeAdapter(CountInput).validate_python({"workflow": "guess", "quantity": 1})


class TestManualCount:

    def test_whole_units(self):
        result = normalize(_item(), UnitCountInput(quantity=Decimal("12")), now=NOW)
        assert result.counted_quantity == Decimal("12")
        assert result.counting_method == CountMethod.MANUAL
        assert result.counting_workflow == CountingWorkflow.UNIT_COUNT
        assert result.reading is None
        assert result.counted_at == NOW
        assert result.raw_inputs == {"quantity": "12"}

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            normalize(_item(), UnitCountInput(quantity=Decimal("-1")))

    def test_fraction_rejected_without_partial_units(self):
        with pytest.raises(ValidationError):
            normalize(_item(), UnitCountInput(quantity=Decimal("2.5")))

    def test_fraction_allowed_with_partial_units(self):
        result = normalize(_item(supports_partial_units=True), UnitCountInput(quantity=Decimal("2.5")))
        assert result.counted_quantity == Decimal("2.5")

    def test_container_item_cannot_be_unit_counted(self):
        with pytest.raises(ValidationError):
            normalize(_item(requires_container=True), UnitCountInput(quantity=Decimal("1")))


class TestContainerWeight:

    def test_units_from_weight(self):
        item = _item(typical_unit_weight_grams=50.0)
        data = ContainerWeightInput(gross_weight_grams=1250.0, tare_weight_grams=250.0)
        result = normalize(item, data, now=NOW)
        assert result.counted_quantity == Decimal("20")
        assert result.unit == "pcs"
        assert result.counting_method == CountMethod.WEIGHT
        assert result.record_fields["net_weight_grams"] == 1000.0
        assert result.reading.measured_weight_grams == 1250.0
        assert result.reading.fallback_tare_grams == 250.0

    def test_registered_container_tare_is_used(self):
        item = _item(typical_unit_weight_grams=100.0)
        data = ContainerWeightInput(gross_weight_grams=1250.0, tare_weight_grams=50.0)
        result = normalize(item, data, container_tare_grams=250.0)
        assert result.counted_quantity == Decimal("10")
        assert result.record_fields["tare_weight_grams"] == 250.0

    def test_net_kilograms_without_unit_weight(self):
        data = ContainerWeightInput(gross_weight_grams=2750.0, tare_weight_grams=250.0)
        result = normalize(_item(unit="kg"), data)
        assert result.counted_quantity == Decimal("2.5")
        assert result.unit == "kg"

    def test_sub_tare_is_not_clamped(self):
        data = ContainerWeightInput(gross_weight_grams=200.0, tare_weight_grams=250.0)
        result = normalize(_item(typical_unit_weight_grams=10.0), data)
        assert result.counted_quantity == Decimal("-5")

    def test_requires_container_needs_a_tare_source(self):
        with pytest.raises(ValidationError):
            normalize(_item(requires_container=True), ContainerWeightInput(gross_weight_grams=1000.0))


class TestBottleHybrid:

    def _wine(self):
        return _item(unit="bottles", full_bottle_weight_grams=1500.0, empty_bottle_weight_grams=500.0)

    def test_full_plus_partial_equivalent(self):
        data = BottleHybridInput(full_bottles_count=2, partial_bottles_weight_grams=1250.0)
        result = normalize(self._wine(), data)
        assert result.counted_quantity == Decimal("2.75")
        assert result.counting_method == CountMethod.HYBRID
        assert result.record_fields["partial_bottles_equivalent"] == 0.75
        assert result.reading.measured_weight_grams == 1250.0
        assert result.reading.fallback_tare_grams == 500.0

    def test_sub_tare_partial_floors_at_zero_but_keeps_reading(self):
        data = BottleHybridInput(full_bottles_count=3, partial_bottles_weight_grams=400.0)
        result = normalize(self._wine(), data)
        assert result.counted_quantity == Decimal("3")
        assert result.reading is not None
        assert result.reading.measured_weight_grams == 400.0

    def test_no_partial_weight_means_no_reading(self):
        result = normalize(self._wine(), BottleHybridInput(full_bottles_count=4))
        assert result.counted_quantity == Decimal("4")
        assert result.reading is None

    def test_missing_bottle_weights_rejected(self):
        data = BottleHybridInput(full_bottles_count=1, partial_bottles_weight_grams=900.0)
        with pytest.raises(ValidationError):
            normalize(_item(full_bottle_weight_grams=1500.0), data)

    def test_full_not_heavier_than_empty_rejected(self):
        item = _item(full_bottle_weight_grams=500.0, empty_bottle_weight_grams=500.0)
        with pytest.raises(ValidationError):
            normalize(item, BottleHybridInput(full_bottles_count=1))


class TestKegWeight:

    def test_liters_and_percent(self):
        item = _item(keg_volume_liters=50.0, empty_keg_weight_grams=13300.0, keg_freshness_days=14)
        data = KegWeightInput(gross_weight_grams=13300.0 + 25250.0, tapped_date=date(2026, 3, 7))
        result = normalize(item, data, now=NOW)
        assert result.counted_quantity == Decimal("25")
        assert result.unit == "L"
        assert result.derived["remaining_percent"] == 50.0
        assert result.derived["days_since_tap"] == 3
        assert result.derived["freshness_status"] == "fresh"
        assert result.derived["estimated_days_remaining"] == 11
        assert result.reading.fallback_tare_grams == 13300.0

    def test_default_empty_keg_weight(self):
        result = normalize(_item(), KegWeightInput(gross_weight_grams=13300.0))
        assert result.counted_quantity == Decimal("0")
        assert result.record_fields["tare_weight_grams"] == 13300.0

    @pytest.mark.parametrize(
        "days,expected",
        [(0, "fresh"), (4, "fresh"), (5, "good"), (9, "good"), (10, "declining"), (14, "declining"), (15, "expired")],
    )
    def test_freshness_bands(self, days, expected):
        assert keg_freshness(days, 14) == expected


class TestBatchWeight:

    def test_kilograms_and_default_use_by(self):
        item = _item(is_batch_tracked=True, batch_use_by_days=3)
        data = BatchWeightInput(gross_weight_grams=4500.0, tare_weight_grams=500.0, batch_code="SOUP-0310")
        result = normalize(item, data, now=NOW)
        assert result.counted_quantity == Decimal("4")
        assert result.unit == "kg"
        assert result.record_fields["use_by_date"] == date(2026, 3, 13)
        assert result.record_fields["batch_code"] == "SOUP-0310"

    def test_explicit_use_by_kept(self):
        item = _item(is_batch_tracked=True, batch_use_by_days=3)
        data = BatchWeightInput(gross_weight_grams=1000.0, use_by_date=date(2026, 3, 11))
        assert normalize(item, data, now=NOW).record_fields["use_by_date"] == date(2026, 3, 11)


class TestKeypadBuffer:

    def test_leading_zero_replaced(self):
        keypad = KeypadBuffer()
        assert keypad.press_all(["0", "5"]) == Decimal("5")
        assert keypad.display == "5"

    def test_decimal_entry(self):
        keypad = KeypadBuffer()
        assert keypad.press_all(["1", "2", ".", "5"]) == Decimal("12.5")

    def test_single_decimal_point(self):
        keypad = KeypadBuffer()
        keypad.press_all(["1", ".", ".", "5"])
        assert keypad.display == "1.5"

    def test_trailing_point_is_integer_value(self):
        keypad = KeypadBuffer()
        assert keypad.press_all(["7", "."]) == Decimal("7")
        assert keypad.display == "7."

    def test_zero_point_entry(self):
        keypad = KeypadBuffer()
        assert keypad.press_all([".", "2", "5"]) == Decimal("0.25")

    def test_decimals_disabled(self):
        keypad = KeypadBuffer(allow_decimals=False)
        assert keypad.press_all(["3", ".", "4"]) == Decimal("34")

    def test_decimal_places_capped(self):
        keypad = KeypadBuffer(max_decimal_places=2)
        assert keypad.press_all(["1", ".", "2", "3", "4"]) == Decimal("1.23")

    def test_double_zero(self):
        keypad = KeypadBuffer()
        assert keypad.press("00") == Decimal("0")
        assert keypad.press_all(["1", "00"]) == Decimal("100")

    def test_max_digits(self):
        keypad = KeypadBuffer(max_digits=3)
        assert keypad.press_all(["9", "9", "9", "9"]) == Decimal("999")

    def test_backspace_and_clear(self):
        keypad = KeypadBuffer()
        keypad.press_all(["4", "2"])
        assert keypad.press("←") == Decimal("4")
        assert keypad.press("←") == Decimal("0")
        assert keypad.display == "0"
        keypad.press_all(["8", "8"])
        assert keypad.press("C") == Decimal("0")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            KeypadBuffer().press("+")
