"""Process-wide aggregate state shared with the HTTP layer.

Each value has exactly one writer (adapter-state callback, poll loop,
relay callback or a user edit) and any number of readers, so a single
lock per object is enough.  No code path holds two of these locks.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Deque, List, Optional

import structlog

from obd_loxone.schemas import Location, TankEntry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConnectionInfo:
    """Immutable view of the adapter connection metadata."""

    device_state: str = "Uninitialized"
    vin: Optional[str] = None
    protocol_version: Optional[str] = None


@dataclass(frozen=True)
class SpareTankReading:
    """Last value relayed from the Miniserver."""

    liters: float
    received_at: datetime


class ProcessState:
    """Connection metadata, last known location, and the last relayed
    spare-tank value."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connection = ConnectionInfo()
        self._spare_tank: Optional[SpareTankReading] = None
        self._location: Optional[Location] = None

    # -- connection ---------------------------------------------------------

    @property
    def connection(self) -> ConnectionInfo:
        with self._lock:
            return self._connection

    def set_device_state(self, device_state: str) -> None:
        with self._lock:
            self._connection = ConnectionInfo(
                device_state=device_state,
                vin=self._connection.vin,
                protocol_version=self._connection.protocol_version,
            )

    def set_identity(
        self, vin: Optional[str], protocol_version: Optional[str]
    ) -> None:
        with self._lock:
            self._connection = ConnectionInfo(
                device_state=self._connection.device_state,
                vin=vin,
                protocol_version=protocol_version,
            )

    # -- location -----------------------------------------------------------

    @property
    def location(self) -> Optional[Location]:
        with self._lock:
            return self._location

    def set_location(self, location: Location) -> None:
        with self._lock:
            self._location = location

    # -- relay --------------------------------------------------------------

    @property
    def spare_tank(self) -> Optional[SpareTankReading]:
        with self._lock:
            return self._spare_tank

    def set_spare_tank_level(self, liters: float) -> None:
        """Relay callback: remember the latest spare-tank value."""
        with self._lock:
            self._spare_tank = SpareTankReading(
                liters=liters, received_at=datetime.now(timezone.utc)
            )


class TankLog:
    """Append-only, newest-first log of user tank/price edits.

    Recording an entry raises a sticky "new reading" flag that stays up
    until a client consumes it.  Consuming an already-clear flag is a
    no-op.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Deque[TankEntry] = deque()
        self._has_new_reading = False

    def record(self, entry: TankEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)
            self._has_new_reading = True
        logger.info(
            "tank_entry_recorded",
            main_tank_level=entry.main_tank_level,
            main_tank_level_unit=entry.main_tank_level_unit,
            aux_tank_level=entry.aux_tank_level,
            aux_tank_level_unit=entry.aux_tank_level_unit,
            main_tank_price=entry.main_tank_price,
            main_tank_price_unit=entry.main_tank_price_unit,
        )

    def latest(self) -> Optional[TankEntry]:
        with self._lock:
            return self._entries[0] if self._entries else None

    def entries(self) -> List[TankEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def has_new_reading(self) -> bool:
        with self._lock:
            return self._has_new_reading

    def consume_new_reading(self) -> None:
        with self._lock:
            was_set = self._has_new_reading
            self._has_new_reading = False
        if was_set:
            logger.info("new_reading_consumed")
