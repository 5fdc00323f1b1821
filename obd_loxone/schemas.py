"""Pydantic v2 models for telemetry samples and tank/price entries.

``TelemetrySample`` serializes with the short JSON keys polling clients
already consume (``rpm``, ``water_temp``, ...) and omits absent fields
instead of emitting ``null``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)

from obd_loxone.units import (
    GALLON,
    LITER,
    PER_GALLON,
    PER_LITER,
    to_liters,
    to_per_liter_price,
)


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

class Location(BaseModel):
    """Most recent position fix."""

    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    elevation: Optional[float] = None


class TelemetrySample(BaseModel):
    """One snapshot of vehicle state, produced once per poll cycle.

    ``fuel_in_tank_l`` is derived from capacity and fuel level when the
    sample is built and never recomputed afterwards.
    """

    model_config = ConfigDict(frozen=True)

    capture_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        serialization_alias="time",
    )

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    elevation: Optional[float] = None

    engine_rpm: Optional[int] = Field(default=None, serialization_alias="rpm")
    fuel_rate_l_per_hour: Optional[float] = Field(
        default=None, serialization_alias="fuel_rate"
    )
    coolant_temp_c: Optional[int] = Field(
        default=None, serialization_alias="water_temp"
    )
    fuel_level_percent: Optional[float] = Field(
        default=None, serialization_alias="fuel_level"
    )
    engine_load_percent: Optional[float] = Field(
        default=None, serialization_alias="engine_load"
    )
    odometer_km: Optional[float] = Field(
        default=None, serialization_alias="odometer_reading"
    )
    tank_capacity_l: Optional[float] = Field(
        default=None, serialization_alias="tank_capacity"
    )
    fuel_in_tank_l: Optional[float] = Field(
        default=None, serialization_alias="fuel_in_tank"
    )

    @model_validator(mode="before")
    @classmethod
    def _derive_fuel_in_tank(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        capacity = data.get("tank_capacity_l")
        level = data.get("fuel_level_percent")
        if capacity is not None and level is not None:
            data["fuel_in_tank_l"] = float(capacity) * float(level) / 100
        else:
            data["fuel_in_tank_l"] = None
        return data

    @field_serializer("capture_time")
    def _serialize_time(self, value: datetime) -> str:
        return value.isoformat()

    @classmethod
    def at_location(
        cls, location: Optional[Location], **fields: Any
    ) -> "TelemetrySample":
        """Build a sample, copying coordinates from *location* if known."""
        if location is not None:
            fields.setdefault("latitude", location.latitude)
            fields.setdefault("longitude", location.longitude)
            fields.setdefault("elevation", location.elevation)
        return cls(**fields)

    def to_json_dict(self) -> Dict[str, Any]:
        """Wire form: short keys, absent fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Tank / price entries
# ---------------------------------------------------------------------------

class TankEntry(BaseModel):
    """One user edit of the tank levels and fuel price.

    Values keep the unit tag they were entered with; the ``*_liters`` and
    ``price_per_liter`` properties convert on read.
    """

    model_config = ConfigDict(frozen=True)

    main_tank_level: Optional[float] = None
    main_tank_level_unit: str = LITER
    aux_tank_level: Optional[float] = None
    aux_tank_level_unit: str = LITER
    main_tank_price: Optional[float] = None
    main_tank_price_unit: str = PER_LITER
    odometer: Optional[float] = None
    recorded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def main_tank_level_liters(self) -> Optional[float]:
        if self.main_tank_level is None:
            return None
        return to_liters(self.main_tank_level, self.main_tank_level_unit)

    @property
    def aux_tank_level_liters(self) -> Optional[float]:
        if self.aux_tank_level is None:
            return None
        return to_liters(self.aux_tank_level, self.aux_tank_level_unit)

    @property
    def price_per_liter(self) -> Optional[float]:
        if self.main_tank_price is None:
            return None
        return to_per_liter_price(self.main_tank_price, self.main_tank_price_unit)

    def to_levels_payload(self) -> Dict[str, Optional[float]]:
        """Unit-normalized form served by ``GET /levels``."""
        return {
            "mainTankLevelLiters": self.main_tank_level_liters,
            "auxTankLevelLiters": self.aux_tank_level_liters,
            "pricePerLiter": self.price_per_liter,
            "odometer": self.odometer,
        }


class TankEditRequest(BaseModel):
    """Body of ``POST /levels``."""

    main_tank_level: Optional[float] = Field(default=None, ge=0)
    main_tank_level_unit: Optional[str] = Field(
        default=None,
        description=f"'{LITER}' or '{GALLON}'; anything else is read as gallons",
    )
    aux_tank_level: Optional[float] = Field(default=None, ge=0)
    aux_tank_level_unit: Optional[str] = None
    main_tank_price: Optional[float] = Field(default=None, ge=0)
    main_tank_price_unit: Optional[str] = Field(
        default=None,
        description=f"'{PER_LITER}' or '{PER_GALLON}'",
    )
    odometer: Optional[float] = Field(default=None, ge=0)

    def to_entry(self, **fallbacks: Any) -> TankEntry:
        """Build the entry, filling omitted fields from *fallbacks*.

        Unit tags still missing after that default to metric.
        """
        values = self.model_dump()
        for name, value in fallbacks.items():
            if values.get(name) is None:
                values[name] = value
        return TankEntry(**{k: v for k, v in values.items() if v is not None})


class TankCapacityRequest(BaseModel):
    """Body of ``PUT /tank_capacity``."""

    tank_capacity_liters: float = Field(..., gt=0)


class MiniserverUrlRequest(BaseModel):
    """Body of ``PUT /miniserver_url``."""

    url: AnyHttpUrl
