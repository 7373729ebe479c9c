"""Keystroke-to-decimal parser for numeric keypad entry.

The buffer is kept as a string so that intermediate states such as ``"2."``
or ``"0.0"`` survive between key presses; ``value`` converts it to a Decimal.
"""

from decimal import Decimal
from typing import Iterable, Optional

from stockcount.core.config import settings
from stockcount.core.exceptions import ValidationError

DIGITS = frozenset("0123456789")
CLEAR = "C"
BACKSPACE = "←"
DOUBLE_ZERO = "00"
DECIMAL_POINT = "."


class KeypadBuffer:
    """Accumulates keypad presses into a decimal quantity.

    Rules:
        - A lone leading ``0`` is replaced by the next digit.
        - At most one decimal point, and only when decimals are allowed.
        - ``00`` is ignored while the buffer is ``0``.
        - Digits beyond ``max_decimal_places`` after the point are ignored.
        - The total number of digits never exceeds ``max_digits``.
        - Backspace on a single character resets to ``0``.
    """

    def __init__(
        self,
        allow_decimals: bool = True,
        max_decimal_places: Optional[int] = None,
        max_digits: Optional[int] = None,
    ):
        self.allow_decimals = allow_decimals
        self.max_decimal_places = (
            settings.keypad_max_decimal_places if max_decimal_places is None else max_decimal_places
        )
        self.max_digits = settings.keypad_max_digits if max_digits is None else max_digits
        self._buffer = "0"

    @property
    def display(self) -> str:
        return self._buffer

    @property
    def value(self) -> Decimal:
        return Decimal(self._buffer.rstrip(DECIMAL_POINT) or "0")

    def _digit_count(self) -> int:
        return sum(1 for ch in self._buffer if ch in DIGITS)

    def _decimals(self) -> int:
        if DECIMAL_POINT not in self._buffer:
            return 0
        return len(self._buffer.split(DECIMAL_POINT, 1)[1])

    def _append_digit(self, digit: str) -> None:
        if self._buffer == "0":
            self._buffer = digit
            return
        if DECIMAL_POINT in self._buffer and self._decimals() >= self.max_decimal_places:
            return
        if self._digit_count() >= self.max_digits:
            return
        self._buffer += digit

    def press(self, key: str) -> Decimal:
        """Apply one key and return the resulting value."""
        if key == CLEAR:
            self._buffer = "0"
        elif key == BACKSPACE:
            self._buffer = self._buffer[:-1] if len(self._buffer) > 1 else "0"
        elif key == DECIMAL_POINT:
            if self.allow_decimals and self.max_decimal_places > 0 and DECIMAL_POINT not in self._buffer:
                self._buffer += DECIMAL_POINT
        elif key == DOUBLE_ZERO:
            if self._buffer != "0":
                self._append_digit("0")
                self._append_digit("0")
        elif key in DIGITS:
            self._append_digit(key)
        else:
            raise ValidationError(f"Unsupported keypad key: {key!r}", key=key)
        return self.value

    def press_all(self, keys: Iterable[str]) -> Decimal:
        for key in keys:
            self.press(key)
        return self.value
