"""Service configuration via environment variables.

Uses pydantic-settings so every field can be overridden with an
env var.  Simulation is the zero-hardware default.

Note: ``env_prefix`` is empty, so field names map directly to env vars
(e.g. ``OBD_PORT``, ``MINISERVER_URL``).
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class ServiceSettings(BaseSettings):
    """OBD Loxone runtime settings."""

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    # -- adapter / vehicle --------------------------------------------------
    obd_port: str = Field(
        default="sim",
        description="Serial port for ELM327, or 'sim' for simulation mode",
    )
    obd_baudrate: int = Field(default=115200, description="Serial baud rate")
    obd_sim_scenario: str = Field(
        default="cruise",
        description="Simulation scenario name (from simulation_scenarios.json)",
    )

    # -- polling ------------------------------------------------------------
    poll_interval_seconds: float = Field(
        default=0.3,
        description="Delay between the end of one poll cycle and the next",
    )
    fetch_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for a single batched adapter fetch",
    )
    readings_window_minutes: int = Field(
        default=5,
        description="Trailing window served by GET /readings",
    )
    reconnect_interval_seconds: float = Field(
        default=10.0,
        description="Delay between adapter reconnect attempts",
    )

    # -- HTTP ---------------------------------------------------------------
    http_host: str = Field(default="0.0.0.0", description="Bind address")
    http_port: int = Field(default=8080, description="Bind port")

    # -- Miniserver relay ---------------------------------------------------
    miniserver_url: str = Field(
        default="http://dns.loxonecloud.com/EXAMPLE/jdev/sps/io/spare-tank/state",
        description="Cloud DNS URL of the spare-tank state on the Miniserver",
    )
    miniserver_username: str = Field(default="", description="Basic-auth user")
    miniserver_password: str = Field(default="", description="Basic-auth password")
    relay_enabled: bool = Field(default=True, description="Run the relay loop")
    relay_interval_seconds: float = Field(
        default=10.0,
        description="Seconds between relay fetches",
    )
    relay_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for each relay HTTP request",
    )

    # -- user preferences ---------------------------------------------------
    tank_capacity_liters: float = Field(
        default=50.0,
        description="Tank capacity used until the user saves one",
    )
    preferences_path: str = Field(
        default="preferences.json",
        description="JSON file holding user preferences",
    )

    # -- behaviour ----------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # -- derived ------------------------------------------------------------
    @property
    def is_simulation(self) -> bool:
        """Return ``True`` when the service is running in simulation mode."""
        return self.obd_port.strip().lower() == "sim"
