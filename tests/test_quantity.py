"""Tests for fixed-point quantity arithmetic and cost rounding."""

import pytest

from tenantmeter.utils.quantity import (
    add_quantities,
    ceil_cost,
    floor_cost,
    format_milli,
    milli_value,
)


@pytest.mark.parametrize(
    "quantity,expected",
    [("500m", 500), ("2", 2000), ("1Ki", 1024000), ("1.5", 1500), ("", 0), (None, 0)],
)
def test_milli_value(quantity, expected):
    assert milli_value(quantity) == expected


def test_format_milli_prefers_whole_units():
    assert format_milli(3000) == "3"
    assert format_milli(1500) == "1500m"


def test_add_quantities_mixed_suffixes():
    assert add_quantities("500m", "1") == "1500m"
    assert add_quantities("1Ki", "0") == "1024"


def test_floor_cost_truncates():
    # 250m at 10 per core -> 2.5 -> 2
    assert floor_cost("250m", 10, "1") == 2


def test_storage_rounding_asymmetry():
    # 1500m at 2 per 1000m divides evenly
    assert floor_cost("1500m", 2, "1000m") == 3
    assert ceil_cost("1500m", 2, "1000m") == 3
    # 1499m does not: floor 2, ceiling 3
    assert floor_cost("1499m", 2, "1000m") == 2
    assert ceil_cost("1499m", 2, "1000m") == 3


def test_zero_unit_rejected():
    with pytest.raises(ValueError):
        floor_cost("1", 1, "0")
    with pytest.raises(ValueError):
        ceil_cost("1", 1, "0")
