"""Byte quantities in Kubernetes resource notation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, InvalidOperation

from pv_transfer.domain.errors import InvalidQuantityError

_BINARY_UNITS: dict[str, int] = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
}
_DECIMAL_UNITS: dict[str, int] = {
    "k": 1000,
    "M": 1000**2,
    "G": 1000**3,
    "T": 1000**4,
    "P": 1000**5,
    "E": 1000**6,
}
_QUANTITY_PATTERN = re.compile(
    r"^\s*(?P<number>[0-9]+(?:\.[0-9]*)?|\.[0-9]+)\s*(?P<unit>[A-Za-z]*)\s*$"
)
_DISPLAY_UNITS = ("Ei", "Pi", "Ti", "Gi", "Mi", "Ki")

GIBIBYTE = _BINARY_UNITS["Gi"]


@dataclass(slots=True, frozen=True, order=True)
class Quantity:
    """Normalized byte count with round-trip formatting to display units."""

    byte_count: int

    def __post_init__(self) -> None:
        if self.byte_count < 0:
            raise InvalidQuantityError(f"Quantity cannot be negative: {self.byte_count}")

    @classmethod
    def parse(cls, text: str) -> Quantity:
        """Parse `512Mi`, `10Gi`, `1.5Ti`, `100G` or a plain byte count."""

        match = _QUANTITY_PATTERN.match(text or "")
        if match is None:
            raise InvalidQuantityError(f"Invalid quantity '{text}'.")

        unit = match.group("unit")
        if unit and unit not in _BINARY_UNITS and unit not in _DECIMAL_UNITS:
            raise InvalidQuantityError(f"Unsupported quantity unit '{unit}' in '{text}'.")

        try:
            number = Decimal(match.group("number"))
        except InvalidOperation as exc:
            raise InvalidQuantityError(f"Invalid quantity '{text}'.") from exc

        multiplier = _BINARY_UNITS.get(unit) or _DECIMAL_UNITS.get(unit) or 1
        return cls(int((number * multiplier).to_integral_value(rounding=ROUND_CEILING)))

    def format(self) -> str:
        """Render using the largest binary unit that represents the value exactly."""

        for unit in _DISPLAY_UNITS:
            size = _BINARY_UNITS[unit]
            if self.byte_count >= size and self.byte_count % size == 0:
                return f"{self.byte_count // size}{unit}"
        return str(self.byte_count)

    def __str__(self) -> str:
        return self.format()


def format_bytes(value: int | float) -> str:
    """Human readable size for console and log output."""

    amount = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(amount) < 1024 or unit == "TiB":
            if unit == "B":
                return f"{int(amount)} B"
            return f"{amount:.1f} {unit}"
        amount /= 1024
    return f"{amount:.1f} TiB"


__all__ = ["GIBIBYTE", "Quantity", "format_bytes"]
