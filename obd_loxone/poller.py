"""Adapter connection state machine and the continuous poll loop.

The adapter reports connection changes through a state listener.  On
``Connected`` the poller fetches VIN and protocol once, then runs one
loop task that fetches the polled quantities, appends a sample to the
store, and sleeps ``interval`` seconds before the next cycle.  Only one
fetch is in flight at a time, so samples reach the store in order.

Leaving ``Connected`` sets the loop's stop event; the loop checks it
before every cycle and wakes from its sleep as soon as it is set.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Callable, Optional

import structlog

from obd_loxone.adapter.base import (
    AdapterBusyError,
    AdapterState,
    DiagnosticAdapter,
    Quantity,
)
from obd_loxone.sample_builder import POLLED_QUANTITIES, build_sample
from obd_loxone.schemas import TelemetrySample
from obd_loxone.state import ProcessState
from obd_loxone.store import TimeSeriesStore
from obd_loxone.timing import interruptible_sleep

logger = structlog.get_logger(__name__)

IDENTIFY_QUANTITIES = (Quantity.VIN, Quantity.PROTOCOL)

CapacityProvider = Callable[[], Optional[float]]


class PollerState(str, enum.Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    UNSUPPORTED = "Unsupported"
    GONE = "Gone"


class AdapterPoller:
    """Drives the adapter: identify once, then poll until told to stop."""

    def __init__(
        self,
        adapter: DiagnosticAdapter,
        store: TimeSeriesStore,
        process_state: ProcessState,
        *,
        interval: float = 0.3,
        fetch_timeout: float = 5.0,
        capacity_provider: Optional[CapacityProvider] = None,
    ) -> None:
        self._adapter = adapter
        self._store = store
        self._process_state = process_state
        self._interval = interval
        self._fetch_timeout = fetch_timeout
        self._capacity_provider = capacity_provider or (lambda: None)

        self._state = PollerState.IDLE
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._cycles = 0

    # -- wiring -------------------------------------------------------------

    def attach(self) -> None:
        """Start listening to the adapter's state notifications."""
        self._adapter.add_state_listener(self.adapter_state_changed)

    def detach(self) -> None:
        self._adapter.remove_state_listener(self.adapter_state_changed)

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def loop_task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def is_polling(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    # -- state machine ------------------------------------------------------

    def adapter_state_changed(self, new_state: AdapterState) -> None:
        """Listener for adapter notifications.  Must run on the event loop."""
        previous = self._state

        if new_state is AdapterState.DISCOVERING:
            self._state = PollerState.CONNECTING
            self._process_state.set_device_state(new_state.value)
        elif new_state is AdapterState.CONNECTED:
            self._state = PollerState.CONNECTED
            self._process_state.set_device_state(new_state.value)
            self._start_loop()
        elif new_state is AdapterState.GONE:
            self._state = PollerState.GONE
            self._process_state.set_device_state(new_state.value)
            self._signal_stop()
        elif new_state is AdapterState.UNSUPPORTED_PROTOCOL:
            self._state = PollerState.UNSUPPORTED
            self._process_state.set_device_state(
                f"{new_state.value}({self._adapter.protocol_name})"
            )
            self._signal_stop()
        elif new_state is AdapterState.DISCONNECTED:
            self._state = PollerState.IDLE
            self._process_state.set_device_state(new_state.value)
            self._signal_stop()

        logger.info(
            "poller_state_changed",
            adapter_state=new_state.value,
            previous=previous.value,
            current=self._state.value,
        )

    # -- loop control -------------------------------------------------------

    def _start_loop(self) -> None:
        if self.is_polling:
            return
        previous = self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event, previous)
        )

    def _signal_stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop the loop and wait for the in-flight cycle to finish."""
        self._signal_stop()
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(
        self, stop_event: asyncio.Event, previous: Optional[asyncio.Task]
    ) -> None:
        # A loop stopped moments ago may still be finishing its cycle.
        if previous is not None and not previous.done():
            await asyncio.wait({previous})

        logger.info("poll_loop_started", interval=self._interval)
        started_at = self._cycles
        try:
            if not stop_event.is_set():
                await self.identify()
            while not stop_event.is_set() and self._state is PollerState.CONNECTED:
                await self.poll_once()
                await interruptible_sleep(self._interval, stop_event)
        finally:
            logger.info("poll_loop_stopped", cycles=self._cycles - started_at)

    # -- fetches ------------------------------------------------------------

    async def identify(self) -> None:
        """Fetch VIN and protocol description and record them."""
        try:
            raw = await asyncio.wait_for(
                self._adapter.fetch_many(IDENTIFY_QUANTITIES),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("identify_timeout", timeout=self._fetch_timeout)
            return
        except AdapterBusyError:
            logger.warning("identify_skipped", reason="adapter_busy")
            return
        except Exception:
            logger.exception("identify_failed")
            return

        vin = raw.get(Quantity.VIN)
        protocol = raw.get(Quantity.PROTOCOL)
        self._process_state.set_identity(vin, protocol)
        logger.info("adapter_identified", vin=_mask_vin(vin), protocol=protocol)

    async def poll_once(self) -> Optional[TelemetrySample]:
        """Run a single fetch-parse-append cycle.

        Returns the sample, or ``None`` when the fetch failed or timed out.
        """
        self._cycles += 1
        try:
            raw = await asyncio.wait_for(
                self._adapter.fetch_many(POLLED_QUANTITIES),
                timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("poll_fetch_timeout", timeout=self._fetch_timeout)
            return None
        except AdapterBusyError:
            logger.warning("poll_skipped", reason="adapter_busy")
            return None
        except Exception:
            logger.exception("poll_fetch_failed")
            return None

        sample = build_sample(
            raw,
            location=self._process_state.location,
            tank_capacity_l=self._capacity_provider(),
        )
        self._store.append(sample)
        logger.debug(
            "sample_captured",
            rpm=sample.engine_rpm,
            fuel_level=sample.fuel_level_percent,
            fuel_in_tank=sample.fuel_in_tank_l,
        )
        return sample


def _mask_vin(vin: Optional[str]) -> Optional[str]:
    """Mask all but the first 3 and last 4 characters of a VIN."""
    if not vin:
        return vin
    if len(vin) < 7:
        return "***"
    return vin[:3] + "*" * (len(vin) - 7) + vin[-4:]
