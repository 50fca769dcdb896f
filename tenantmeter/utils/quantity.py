"""Fixed-point helpers for Kubernetes resource quantities.

Quantities travel as strings such as ``"500m"``, ``"2"`` or ``"1Gi"``.  All
arithmetic is carried out on integer milli-units so no floating point value
is ever persisted.  Cost for an amount ``q`` of a resource priced at ``p``
per ``u`` units is

.. math::

    C = \\left\\lfloor \\frac{q_{milli} \\cdot p}{u_{milli}} \\right\\rfloor

Storage is billed with the ceiling variant so fractional usage is never
rounded away.
"""

from __future__ import annotations

from decimal import ROUND_CEILING

from kubernetes.utils import parse_quantity

__all__ = [
    "milli_value",
    "format_milli",
    "add_quantities",
    "floor_cost",
    "ceil_cost",
]


def milli_value(quantity: str | int | None) -> int:
    """Return ``quantity`` expressed in integer milli-units.

    Sub-milli fractions are rounded up, matching how the control plane
    reports milli values.
    """

    if quantity is None or quantity == "":
        return 0
    value = parse_quantity(quantity) * 1000
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def format_milli(milli: int) -> str:
    """Return a canonical quantity string for ``milli`` milli-units."""

    if milli % 1000 == 0:
        return str(milli // 1000)
    return f"{milli}m"


def add_quantities(left: str | None, right: str | None) -> str:
    """Return ``left + right`` as a canonical quantity string."""

    return format_milli(milli_value(left) + milli_value(right))


def floor_cost(quantity: str, price: int, unit: str) -> int:
    """Return the truncated cost of ``quantity`` at ``price`` per ``unit``."""

    unit_milli = milli_value(unit)
    if unit_milli <= 0:
        raise ValueError(f"price unit must be positive, got {unit!r}")
    return milli_value(quantity) * price // unit_milli


def ceil_cost(quantity: str, price: int, unit: str) -> int:
    """Return the ceiling-rounded cost of ``quantity`` at ``price`` per ``unit``."""

    unit_milli = milli_value(unit)
    if unit_milli <= 0:
        raise ValueError(f"price unit must be positive, got {unit!r}")
    return -(-milli_value(quantity) * price // unit_milli)

