"""Bluetooth scale connection with scoped acquisition.

The transport (a BLE GATT link in production, a fake in tests) is always
released: on an explicit ``disconnect()``, when the ``scale_connection()``
block exits normally, and when it exits with an exception.
"""

import logging
import struct
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol

from stockcount.core.exceptions import TransientError, ValidationError

logger = logging.getLogger(__name__)

# Weight Measurement characteristic flag bits
UNIT_MASK = 0x03
STABLE_FLAG = 0x10

UNIT_TO_GRAMS = {
    0: ("g", 1.0),
    1: ("kg", 1000.0),
    2: ("oz", 28.35),
    3: ("lb", 453.6),
}


class ScaleTransport(Protocol):
    """Minimal link to a physical scale."""

    async def open(self) -> None: ...

    async def read(self) -> bytes: ...

    async def tare(self) -> None: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class ScaleReading:
    weight_grams: float
    unit: str
    stable: bool
    timestamp_ms: int


def parse_weight_measurement(payload: bytes) -> ScaleReading:
    """Decode ``flags:uint8, weight:uint16 LE`` into grams."""
    if len(payload) < 3:
        raise ValidationError("Weight measurement payload too short", length=len(payload))
    flags, raw = struct.unpack_from("<BH", payload)
    unit, factor = UNIT_TO_GRAMS[flags & UNIT_MASK]
    return ScaleReading(
        weight_grams=raw * factor,
        unit=unit,
        stable=bool(flags & STABLE_FLAG),
        timestamp_ms=int(time.time() * 1000),
    )


class ScaleConnection:
    def __init__(self, transport: ScaleTransport, name: Optional[str] = None):
        self.transport = transport
        self.name = name or type(transport).__name__
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        try:
            await self.transport.open()
        except BaseException as exc:
            # Release whatever the failed open acquired
            await self._close_transport()
            if isinstance(exc, Exception):
                raise TransientError(f"Failed to connect to scale: {exc}") from exc
            raise
        self._connected = True
        logger.info("Scale %s connected", self.name)

    def _require_connected(self) -> None:
        if not self._connected:
            raise TransientError("Scale not connected")

    async def read_weight(self) -> ScaleReading:
        self._require_connected()
        return parse_weight_measurement(await self.transport.read())

    async def tare(self) -> None:
        self._require_connected()
        await self.transport.tare()

    async def disconnect(self) -> None:
        """Release the transport. Safe to call more than once."""
        if not self._connected:
            return
        self._connected = False
        await self._close_transport()
        logger.info("Scale %s disconnected", self.name)

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except Exception:
            logger.exception("Error while closing scale transport")


@asynccontextmanager
async def scale_connection(transport: ScaleTransport, name: Optional[str] = None) -> AsyncIterator[ScaleConnection]:
    connection = ScaleConnection(transport, name=name)
    await connection.connect()
    try:
        yield connection
    finally:
        await connection.disconnect()
