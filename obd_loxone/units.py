"""Volume and price unit conversion.

Values are stored with the unit tag the user entered them in and are
converted to liters / price-per-liter only when displayed or served.
Any tag other than the metric one (``"L"`` / ``"/L"``) is treated as
US gallons, including unrecognized tags.
"""

from __future__ import annotations

from typing import Optional, Union

LITERS_PER_GALLON = 3.785

LITER = "L"
GALLON = "gal"
PER_LITER = "/L"
PER_GALLON = "/gal"

UNAVAILABLE = "<unavailable>"


def to_liters(value: float, unit: str) -> float:
    """Convert a volume tagged with *unit* to liters."""
    if unit == LITER:
        return value
    return value * LITERS_PER_GALLON


def to_per_liter_price(value: float, unit: str) -> float:
    """Convert a price tagged with *unit* to price per liter."""
    if unit == PER_LITER:
        return value
    return value / LITERS_PER_GALLON


def format_reading(value: Optional[Union[int, float]], unit: str) -> str:
    """Render a reading for humans; absent values show as ``<unavailable>``."""
    if value is None:
        return UNAVAILABLE
    return f"{value} {unit}"
