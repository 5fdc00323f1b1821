"""Shared pytest fixtures for OBD Loxone tests."""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest

from obd_loxone.config import ServiceSettings
from obd_loxone.services import Services


@pytest.fixture(autouse=True)
def _reset_scenario_cache() -> Generator[None, None, None]:
    """Clear the simulation scenario cache between tests."""
    from obd_loxone.adapter import simulation

    simulation._scenarios_cache = None
    yield
    simulation._scenarios_cache = None


@pytest.fixture()
def settings(tmp_path: Path) -> ServiceSettings:
    """Simulation settings with a throwaway preferences file."""
    return ServiceSettings(
        obd_port="sim",
        obd_sim_scenario="cruise",
        poll_interval_seconds=0.01,
        fetch_timeout_seconds=1.0,
        reconnect_interval_seconds=0.01,
        miniserver_url="http://dns.loxonecloud.com/504F94A00000/jdev/sps/io/spare-tank/state",
        miniserver_username="test",
        miniserver_password="Test123",
        relay_interval_seconds=0.01,
        relay_timeout_seconds=1.0,
        tank_capacity_liters=50.0,
        preferences_path=str(tmp_path / "preferences.json"),
    )


@pytest.fixture()
def services(settings: ServiceSettings) -> Services:
    return Services.from_settings(settings)
