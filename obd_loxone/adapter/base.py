"""Abstract base class for diagnostic adapters."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import structlog

logger = structlog.get_logger(__name__)

# Adapters put a narrow no-break space between value and unit.
UNIT_SEPARATOR = "\u202f"


class Quantity(str, enum.Enum):
    """Values the service asks an adapter for."""

    RPM = "RPM"
    ODOMETER = "ODOMETER"
    FUEL_RATE = "FUEL_RATE"
    COOLANT_TEMP = "COOLANT_TEMP"
    FUEL_LEVEL = "FUEL_LEVEL"
    ENGINE_LOAD = "ENGINE_LOAD"
    VIN = "VIN"
    PROTOCOL = "PROTOCOL"


class AdapterState(str, enum.Enum):
    """Connection states reported by an adapter."""

    DISCONNECTED = "Disconnected"
    DISCOVERING = "Discovering"
    CONNECTED = "Connected"
    UNSUPPORTED_PROTOCOL = "UnsupportedProtocol"
    GONE = "Gone"


class AdapterBusyError(RuntimeError):
    """A previous batch is still running on the adapter."""


StateListener = Callable[[AdapterState], None]


class DiagnosticAdapter(ABC):
    """Unified interface for talking to an OBD-II adapter.

    Connection progress is reported through state listeners rather than
    exceptions; ``connect()`` returns once the adapter has settled in
    ``CONNECTED``, ``UNSUPPORTED_PROTOCOL`` or ``GONE``.

    Concrete implementations: ``SimulationAdapter`` (fixture-based) and
    ``LiveAdapter`` (python-OBD hardware wrapper).
    """

    def __init__(self) -> None:
        self._state = AdapterState.DISCONNECTED
        self._listeners: List[StateListener] = []

    # -- state notifications ------------------------------------------------

    @property
    def state(self) -> AdapterState:
        return self._state

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: AdapterState) -> None:
        self._state = state
        logger.info("adapter_state_changed", state=state.value)
        for listener in list(self._listeners):
            listener(state)

    # -- lifecycle ----------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport and negotiate a vehicle protocol."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection."""

    @property
    @abstractmethod
    def protocol_name(self) -> Optional[str]:
        """Human-readable vehicle protocol, once negotiated."""

    # -- data reads ---------------------------------------------------------

    @abstractmethod
    async def fetch_many(
        self, quantities: Sequence[Quantity]
    ) -> Dict[Quantity, Optional[str]]:
        """Query *quantities* in one batch.

        Returns the adapter's formatted response per quantity (number,
        U+202F, unit), or ``None`` where the adapter had no answer.
        """
