"""Tests for display-amount / base-unit conversion."""

from __future__ import annotations

from decimal import Decimal

import pytest

from secure_swap.domain.exceptions import ValidationError
from secure_swap.domain.units import MAX_UINT256, from_base_units, to_base_units


class TestToBaseUnits:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("1", 10**18),
            ("1.5", 1_500_000_000_000_000_000),
            ("0.000000000000000001", 1),
            ("0", 0),
            (2, 2 * 10**18),
            (0.1, 10**17),
            (Decimal("0.25"), 25 * 10**16),
        ],
    )
    def test_exact_conversion(self, value, expected: int) -> None:
        assert to_base_units(value) == expected

    def test_custom_decimals(self) -> None:
        assert to_base_units("12.34", decimals=2) == 1234

    def test_too_many_decimal_places(self) -> None:
        with pytest.raises(ValidationError, match="decimal places"):
            to_base_units("0.0000000000000000001")

    @pytest.mark.parametrize("value", ["", "   ", None, True, "abc", "NaN", "Infinity"])
    def test_rejects_malformed(self, value) -> None:
        with pytest.raises(ValidationError):
            to_base_units(value, field="priceETH")

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValidationError, match="negative"):
            to_base_units("-1")

    def test_rejects_overflow(self) -> None:
        with pytest.raises(ValidationError, match="too large"):
            to_base_units(str(MAX_UINT256 + 1), decimals=0)

    @pytest.mark.parametrize("value", ["1e999999", "1E+1000000000", "9e77"])
    def test_rejects_huge_exponent(self, value: str) -> None:
        with pytest.raises(ValidationError, match="too large"):
            to_base_units(value)

    def test_rejects_tiny_exponent(self) -> None:
        with pytest.raises(ValidationError, match="decimal places"):
            to_base_units("1e-9999999")

    def test_error_names_field(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            to_base_units("x", field="amountETH")
        assert exc_info.value.field == "amountETH"


class TestFromBaseUnits:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (10**18, "1.0"),
            (1_500_000_000_000_000_000, "1.5"),
            (1, "0.000000000000000001"),
            (0, "0.0"),
        ],
    )
    def test_formatting(self, value: int, expected: str) -> None:
        assert from_base_units(value) == expected

    def test_negative(self) -> None:
        with pytest.raises(ValueError):
            from_base_units(-1)
