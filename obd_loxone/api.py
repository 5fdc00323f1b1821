"""Local HTTP API over the telemetry store and process state.

GET  /readings             -- trailing window of samples + connection metadata
GET  /levels               -- latest tank/price entry in liters and price per liter
POST /levels               -- record a tank/price edit (raises the new-reading flag)
GET  /has_new_reading      -- {"status": 0|1}
GET  /consume_new_reading  -- clear the new-reading flag (idempotent)
PUT  /tank_capacity        -- save the tank capacity used for new samples
PUT  /miniserver_url       -- save the Miniserver gauge URL
PUT  /location             -- latest GPS fix from a companion device
GET  /status               -- human-readable summary
GET  /health               -- liveness
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status

import obd_loxone
from obd_loxone.schemas import (
    Location,
    MiniserverUrlRequest,
    TankCapacityRequest,
    TankEditRequest,
)
from obd_loxone.services import Services
from obd_loxone.units import format_reading

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def create_app(services: Services) -> FastAPI:
    """Build the FastAPI app bound to *services*."""
    app = FastAPI(
        title="OBD Loxone",
        version=obd_loxone.__version__,
        description="Vehicle telemetry relay for Loxone",
    )
    app.state.services = services
    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------

@router.get("/readings", tags=["Readings"])
def get_readings(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Samples from the trailing window, newest first."""
    window = timedelta(minutes=services.settings.readings_window_minutes)
    samples = services.store.query_window(window)
    connection = services.process_state.connection
    return {
        "obd_data": [sample.to_json_dict() for sample in samples],
        "device_state": connection.device_state,
        "protocol_version": connection.protocol_version,
        "vin": connection.vin,
    }


# ---------------------------------------------------------------------------
# Tank levels / price
# ---------------------------------------------------------------------------

@router.get("/levels", tags=["Levels"])
def get_levels(services: Services = Depends(get_services)) -> Dict[str, Any]:
    entry = services.tank_log.latest()
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No tank levels have been recorded yet",
        )
    return entry.to_levels_payload()


@router.post("/levels", tags=["Levels"])
def record_levels(
    body: TankEditRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Record a user edit of tank levels and price.

    Omitted unit tags and price fall back to the values saved by the
    previous edit.
    """
    saved = services.preferences.snapshot()
    entry = body.to_entry(
        main_tank_level_unit=saved.main_tank_level_unit,
        aux_tank_level_unit=saved.aux_tank_level_unit,
        main_tank_price=saved.main_tank_price,
        main_tank_price_unit=saved.main_tank_price_unit,
    )
    services.tank_log.record(entry)

    remembered: Dict[str, Any] = {
        "main_tank_level_unit": entry.main_tank_level_unit,
        "aux_tank_level_unit": entry.aux_tank_level_unit,
        "main_tank_price_unit": entry.main_tank_price_unit,
    }
    if entry.main_tank_price is not None:
        remembered["main_tank_price"] = entry.main_tank_price
    services.preferences.update(**remembered)

    return entry.to_levels_payload()


@router.get("/has_new_reading", tags=["Levels"])
def has_new_reading(services: Services = Depends(get_services)) -> Dict[str, int]:
    return {"status": 1 if services.tank_log.has_new_reading else 0}


@router.get("/consume_new_reading", tags=["Levels"])
def consume_new_reading(services: Services = Depends(get_services)) -> Response:
    services.tank_log.consume_new_reading()
    return Response(status_code=status.HTTP_200_OK)


# ---------------------------------------------------------------------------
# User settings
# ---------------------------------------------------------------------------

@router.put("/tank_capacity", tags=["Settings"])
def set_tank_capacity(
    body: TankCapacityRequest,
    services: Services = Depends(get_services),
) -> Dict[str, float]:
    services.preferences.set("tank_capacity_liters", body.tank_capacity_liters)
    logger.info("tank_capacity_saved", liters=body.tank_capacity_liters)
    return {"tank_capacity_liters": body.tank_capacity_liters}


@router.put("/miniserver_url", tags=["Settings"])
def set_miniserver_url(
    body: MiniserverUrlRequest,
    services: Services = Depends(get_services),
) -> Dict[str, str]:
    """Save the gauge URL; the relay uses it from its next fetch."""
    url = str(body.url)
    services.preferences.set("miniserver_url", url)
    logger.info("miniserver_url_saved", host=body.url.host)
    return {"miniserver_url": url}


@router.put("/location", tags=["Settings"], status_code=status.HTTP_204_NO_CONTENT)
def set_location(
    body: Location,
    services: Services = Depends(get_services),
) -> Response:
    services.process_state.set_location(body)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

@router.get("/status", tags=["Status"])
def get_status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Connection, relay and latest readings, formatted for display."""
    connection = services.process_state.connection
    spare = services.process_state.spare_tank
    latest = services.store.latest()

    def show(attr: str, unit: str) -> str:
        return format_reading(getattr(latest, attr) if latest else None, unit)

    return {
        "device_state": connection.device_state,
        "vin": connection.vin,
        "protocol_version": connection.protocol_version,
        "spare_tank_liters": spare.liters if spare else None,
        "spare_tank_received_at": spare.received_at.isoformat() if spare else None,
        "tank_capacity_liters": services.tank_capacity_liters(),
        "miniserver_url": services.miniserver_url(),
        "readings": {
            "rpm": show("engine_rpm", "rpm"),
            "odometer": show("odometer_km", "km"),
            "fuel_rate": show("fuel_rate_l_per_hour", "L/h"),
            "water_temp": show("coolant_temp_c", "°C"),
            "engine_load": show("engine_load_percent", "%"),
            "fuel_in_tank": show("fuel_in_tank_l", "L"),
        },
    }


@router.get("/health", tags=["Health"])
def health_check(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "version": obd_loxone.__version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sample_count": len(services.store),
    }
