from __future__ import annotations

import pytest

from pv_transfer.domain.errors import InvalidQuantityError
from pv_transfer.domain.quantity import GIBIBYTE, Quantity, format_bytes


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("512Mi", 512 * 1024**2),
        ("10Gi", 10 * GIBIBYTE),
        ("1.5Ti", 1536 * GIBIBYTE),
        ("100G", 100 * 1000**3),
        ("2k", 2000),
        ("4096", 4096),
        (" 1Ki ", 1024),
    ],
)
def test_parse_accepts_kubernetes_notation(text: str, expected: int) -> None:
    assert Quantity.parse(text).byte_count == expected


@pytest.mark.parametrize("text", ["", "Gi", "10Xi", "-1Gi", "ten"])
def test_parse_rejects_invalid_quantities(text: str) -> None:
    with pytest.raises(InvalidQuantityError):
        Quantity.parse(text)


def test_parse_rounds_fractional_bytes_up() -> None:
    assert Quantity.parse("0.5").byte_count == 1


def test_invalid_quantity_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        Quantity.parse("lots")


def test_format_uses_largest_exact_binary_unit() -> None:
    assert Quantity.parse("1024Mi").format() == "1Gi"
    assert Quantity.parse("1536Mi").format() == "1536Mi"
    assert str(Quantity(1000)) == "1000"


def test_quantities_compare_by_byte_count() -> None:
    assert Quantity.parse("1Gi") > Quantity.parse("1000Mi")
    assert Quantity.parse("2Gi") == Quantity(2 * 1024**3)


def test_negative_byte_count_is_rejected() -> None:
    with pytest.raises(InvalidQuantityError):
        Quantity(-1)


def test_format_bytes_is_human_readable() -> None:
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.5 KiB"
    assert format_bytes(3 * GIBIBYTE) == "3.0 GiB"
