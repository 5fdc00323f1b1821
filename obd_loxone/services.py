"""Process-scoped service container.

Built once at start-up and handed to the poller, the relay and the HTTP
app; nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from obd_loxone.config import ServiceSettings
from obd_loxone.preferences import PreferenceStore
from obd_loxone.state import ProcessState, TankLog
from obd_loxone.store import TimeSeriesStore


@dataclass
class Services:
    settings: ServiceSettings
    preferences: PreferenceStore
    store: TimeSeriesStore = field(default_factory=TimeSeriesStore)
    process_state: ProcessState = field(default_factory=ProcessState)
    tank_log: TankLog = field(default_factory=TankLog)

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "Services":
        return cls(
            settings=settings,
            preferences=PreferenceStore(settings.preferences_path),
        )

    def tank_capacity_liters(self) -> float:
        """User-saved capacity, else the configured default."""
        return self.preferences.get(
            "tank_capacity_liters", self.settings.tank_capacity_liters
        )

    def miniserver_url(self) -> str:
        return self.preferences.get("miniserver_url", self.settings.miniserver_url)
