"""Fixture-based simulation adapter (no hardware required).

Loads scenarios from ``fixtures/simulation_scenarios.json`` and applies
Gaussian noise to each quantity so consecutive samples vary
realistically.  Responses are formatted the way a real adapter formats
them: number, narrow no-break space, unit.
"""

from __future__ import annotations

import asyncio
import json
import random
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from obd_loxone.adapter.base import (
    UNIT_SEPARATOR,
    AdapterState,
    DiagnosticAdapter,
    Quantity,
)

_FIXTURES_DIR = Path(__file__).resolve().parent.parent / "fixtures"


class SimulationAdapter(DiagnosticAdapter):
    """Answers fetches from a JSON fixture scenario."""

    def __init__(self, scenario: str = "cruise", latency: float = 0.0) -> None:
        super().__init__()
        self._scenario_name = scenario
        self._scenario: Dict[str, Any] = {}
        self._latency = latency
        self._fetch_count = 0

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        scenarios = _load_scenarios()
        if self._scenario_name not in scenarios:
            available = ", ".join(sorted(scenarios))
            raise ValueError(
                f"Unknown simulation scenario '{self._scenario_name}'. "
                f"Available: {available}"
            )
        self._scenario = scenarios[self._scenario_name]
        self._fetch_count = 0

        self._set_state(AdapterState.DISCOVERING)
        if self._latency:
            await asyncio.sleep(self._latency)

        if self._scenario.get("unreachable"):
            self._set_state(AdapterState.GONE)
        elif self._scenario.get("unsupported_protocol"):
            self._set_state(AdapterState.UNSUPPORTED_PROTOCOL)
        else:
            self._set_state(AdapterState.CONNECTED)

    async def disconnect(self) -> None:
        if self.state is not AdapterState.DISCONNECTED:
            self._set_state(AdapterState.DISCONNECTED)

    def simulate_gone(self) -> None:
        """Pretend the adapter dropped off the bus."""
        self._set_state(AdapterState.GONE)

    @property
    def protocol_name(self) -> Optional[str]:
        return self._scenario.get("protocol")

    # -- data reads ---------------------------------------------------------

    async def fetch_many(
        self, quantities: Sequence[Quantity]
    ) -> Dict[Quantity, Optional[str]]:
        self._check_connected()
        if self._latency:
            await asyncio.sleep(self._latency)
        self._fetch_count += 1
        return {q: self._respond(q) for q in quantities}

    # -- internal -----------------------------------------------------------

    def _respond(self, quantity: Quantity) -> Optional[str]:
        if quantity is Quantity.VIN:
            return self._scenario.get("vin")
        if quantity is Quantity.PROTOCOL:
            return self._scenario.get("protocol")

        entry = self._scenario.get("quantities", {}).get(quantity.value)
        if entry is None:
            return None
        if "raw" in entry:
            return entry["raw"]

        value = entry["base"] + entry.get("step", 0.0) * self._fetch_count
        value = _apply_noise(value, entry.get("noise", 0.0))
        if entry.get("integer"):
            text = str(int(round(value)))
        else:
            text = f"{value:.1f}"
        return f"{text}{UNIT_SEPARATOR}{entry['unit']}"

    def _check_connected(self) -> None:
        if self.state is not AdapterState.CONNECTED:
            raise RuntimeError("SimulationAdapter is not connected")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_scenarios_cache: Optional[Dict[str, Any]] = None


def _load_scenarios() -> Dict[str, Any]:
    global _scenarios_cache
    if _scenarios_cache is None:
        path = _FIXTURES_DIR / "simulation_scenarios.json"
        with open(path, encoding="utf-8") as fh:
            _scenarios_cache = json.load(fh)
    return _scenarios_cache


def _apply_noise(base: float, noise: float) -> float:
    """Apply Gaussian noise (std-dev = noise) to a base value.

    Result is clamped to >= 0 since the simulated quantities are
    non-negative.
    """
    if noise <= 0:
        return base
    return round(max(0.0, base + random.gauss(0, noise)), 2)
