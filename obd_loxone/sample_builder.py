"""Assembles a ``TelemetrySample`` from one batch of adapter responses."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Mapping, Optional

import structlog

from obd_loxone.adapter.base import Quantity
from obd_loxone.schemas import Location, TelemetrySample
from obd_loxone.value_parser import parse_float, parse_int

logger = structlog.get_logger(__name__)

# Quantities fetched every poll cycle, in request order.
POLLED_QUANTITIES = (
    Quantity.RPM,
    Quantity.ODOMETER,
    Quantity.FUEL_RATE,
    Quantity.COOLANT_TEMP,
    Quantity.FUEL_LEVEL,
    Quantity.ENGINE_LOAD,
)

# quantity -> (sample field, parser)
_FIELD_PARSERS = {
    Quantity.RPM: ("engine_rpm", parse_int),
    Quantity.ODOMETER: ("odometer_km", parse_float),
    Quantity.FUEL_RATE: ("fuel_rate_l_per_hour", parse_float),
    Quantity.COOLANT_TEMP: ("coolant_temp_c", parse_int),
    Quantity.FUEL_LEVEL: ("fuel_level_percent", parse_float),
    Quantity.ENGINE_LOAD: ("engine_load_percent", parse_float),
}


def parse_responses(raw: Mapping[Quantity, Optional[str]]) -> Dict[str, object]:
    """Parse each formatted response independently.

    A response that is missing or does not parse leaves its field out;
    the other fields are unaffected.
    """
    fields: Dict[str, object] = {}
    for quantity, (field_name, parser) in _FIELD_PARSERS.items():
        text = raw.get(quantity)
        value = parser(text)
        if value is None:
            if text is not None:
                logger.debug("field_unparsed", quantity=quantity.value, raw=text)
            continue
        fields[field_name] = value
    return fields


def build_sample(
    raw: Mapping[Quantity, Optional[str]],
    *,
    location: Optional[Location] = None,
    tank_capacity_l: Optional[float] = None,
    capture_time: Optional[datetime] = None,
) -> TelemetrySample:
    """Turn one batch of adapter responses into a sample."""
    fields = parse_responses(raw)
    fields["tank_capacity_l"] = tank_capacity_l
    if capture_time is not None:
        fields["capture_time"] = capture_time
    return TelemetrySample.at_location(location, **fields)
