"""Tests for scoped scale connections and weight payload decoding."""

import asyncio
import struct

import pytest

from stockcount.core.exceptions import TransientError, ValidationError
from stockcount.services.scale_connection import (
    ScaleConnection,
    parse_weight_measurement,
    scale_connection,
)


class FakeTransport:
    def __init__(self, payload=b"\x10\xe8\x03", fail_open=False, open_error=None):
        self.payload = payload
        self.open_error = open_error or (OSError("device not found") if fail_open else None)
        self.opened = 0
        self.closed = 0
        self.tared = 0

    async def open(self):
        self.opened += 1
        if self.open_error is not None:
            raise self.open_error

    async def read(self):
        return self.payload

    async def tare(self):
        self.tared += 1

    async def close(self):
        self.closed += 1


class TestParseWeightMeasurement:

    def test_grams_stable(self):
        reading = parse_weight_measurement(struct.pack("<BH", 0x10, 1000))
        assert reading.weight_grams == 1000.0
        assert reading.unit == "g"
        assert reading.stable is True

    @pytest.mark.parametrize(
        "flags,expected_unit,expected_grams",
        [(0x01, "kg", 2000.0), (0x02, "oz", 56.7), (0x03, "lb", 907.2)],
    )
    def test_unit_conversion(self, flags, expected_unit, expected_grams):
        reading = parse_weight_measurement(struct.pack("<BH", flags, 2))
        assert reading.unit == expected_unit
        assert reading.weight_grams == pytest.approx(expected_grams)
        assert reading.stable is False

    def test_short_payload_rejected(self):
        with pytest.raises(ValidationError):
            parse_weight_measurement(b"\x00\x01")


class TestScaleConnection:

    @pytest.mark.asyncio
    async def test_released_on_normal_exit(self):
        transport = FakeTransport()
        async with scale_connection(transport) as scale:
            reading = await scale.read_weight()
            assert reading.weight_grams == 1000.0
            await scale.tare()
        assert transport.tared == 1
        assert transport.closed == 1
        assert not scale.is_connected

    @pytest.mark.asyncio
    async def test_released_on_exception(self):
        transport = FakeTransport()
        with pytest.raises(RuntimeError):
            async with scale_connection(transport):
                raise RuntimeError("count screen closed")
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_explicit_disconnect_is_idempotent(self):
        transport = FakeTransport()
        async with scale_connection(transport) as scale:
            await scale.disconnect()
            await scale.disconnect()
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_failed_open_releases_and_raises_transient(self):
        transport = FakeTransport(fail_open=True)
        with pytest.raises(TransientError):
            async with scale_connection(transport):
                pass
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_non_os_open_failure_still_releases(self):
        transport = FakeTransport(open_error=RuntimeError("GATT server disconnected"))
        with pytest.raises(TransientError) as exc_info:
            async with scale_connection(transport):
                pass
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_cancelled_open_releases_and_propagates(self):
        transport = FakeTransport(open_error=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            async with scale_connection(transport):
                pass
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_read_requires_connection(self):
        scale = ScaleConnection(FakeTransport())
        with pytest.raises(TransientError):
            await scale.read_weight()
