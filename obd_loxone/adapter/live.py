"""LiveAdapter -- python-OBD hardware wrapper.

``python-OBD`` is imported lazily inside methods so that simulation mode
works without the GPL-licensed dependency installed.  All blocking I/O
is offloaded to a thread via ``asyncio.to_thread``.

python-OBD returns pint quantities; they are rendered back into the
adapter-style ``"<number><U+202F><unit>"`` strings the poller parses.

A worker thread cannot be cancelled.  When the awaiting coroutine gives
up (timeout, shutdown) the batch is flagged to stop before its next
query, and no new batch starts until the old thread has returned, so
the serial connection only ever sees one query at a time.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Dict, Optional, Sequence

import structlog

from obd_loxone.adapter.base import (
    UNIT_SEPARATOR,
    AdapterBusyError,
    AdapterState,
    DiagnosticAdapter,
    Quantity,
)

logger = structlog.get_logger(__name__)

# python-OBD command names per quantity.  The protocol description
# comes from the connection itself.
_COMMAND_NAMES: Dict[Quantity, str] = {
    Quantity.RPM: "RPM",
    Quantity.ODOMETER: "ODOMETER",
    Quantity.FUEL_RATE: "FUEL_RATE",
    Quantity.COOLANT_TEMP: "COOLANT_TEMP",
    Quantity.FUEL_LEVEL: "FUEL_LEVEL",
    Quantity.ENGINE_LOAD: "ENGINE_LOAD",
    Quantity.VIN: "VIN",
}


class LiveAdapter(DiagnosticAdapter):
    """Wraps ``obd.OBD`` for real ELM327 adapter communication."""

    def __init__(self, port: str, baudrate: int = 115200, timeout: float = 5.0) -> None:
        super().__init__()
        self._port = port
        self._baudrate = baudrate
        self._timeout = timeout
        self._connection: Any = None  # obd.OBD instance (lazy)
        self._worker: Optional[asyncio.Future] = None
        self._abort = threading.Event()
        self._io_lock = threading.Lock()

    # -- lifecycle ----------------------------------------------------------

    async def connect(self) -> None:
        obd = _import_obd()
        await self._drain_worker()
        if self._connection is not None:
            await asyncio.to_thread(self._connection.close)
            self._connection = None
        self._set_state(AdapterState.DISCOVERING)
        try:
            self._connection = await asyncio.to_thread(
                obd.OBD,
                portstr=self._port,
                baudrate=self._baudrate,
                timeout=self._timeout,
            )
        except Exception:
            logger.exception("live_adapter_connect_failed", port=self._port)
            self._connection = None
            self._set_state(AdapterState.GONE)
            return

        status = str(self._connection.status())
        logger.info("live_adapter_status", port=self._port, status=status)
        self._set_state(_map_status(obd, status))

    async def disconnect(self) -> None:
        await self._drain_worker()
        if self._connection is not None:
            await asyncio.to_thread(self._connection.close)
            self._connection = None
        if self.state is not AdapterState.DISCONNECTED:
            self._set_state(AdapterState.DISCONNECTED)

    @property
    def protocol_name(self) -> Optional[str]:
        if self._connection is None:
            return None
        return self._connection.protocol_name() or None

    @property
    def is_querying(self) -> bool:
        """``True`` while a worker thread is still talking to the adapter."""
        return self._worker is not None and not self._worker.done()

    def _set_state(self, state: AdapterState) -> None:
        if state is not AdapterState.CONNECTED:
            self._abort.set()
        super()._set_state(state)

    # -- data reads ---------------------------------------------------------

    async def fetch_many(
        self, quantities: Sequence[Quantity]
    ) -> Dict[Quantity, Optional[str]]:
        self._check_connected()
        if self.is_querying:
            raise AdapterBusyError("previous python-OBD batch is still running")

        self._abort.clear()
        worker = asyncio.ensure_future(
            asyncio.to_thread(self._query_all, self._connection, list(quantities))
        )
        worker.add_done_callback(self._on_worker_done)
        self._worker = worker
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            self._abort.set()
            raise

    # -- internal -----------------------------------------------------------

    async def _drain_worker(self) -> None:
        """Stop the running batch early and wait for its thread."""
        worker = self._worker
        if worker is not None and not worker.done():
            self._abort.set()
            await asyncio.wait({worker})

    def _query_all(
        self, connection: Any, quantities: Sequence[Quantity]
    ) -> Dict[Quantity, Optional[str]]:
        obd = _import_obd()
        results: Dict[Quantity, Optional[str]] = {}
        with self._io_lock:
            for index, quantity in enumerate(quantities):
                if self._abort.is_set():
                    logger.info(
                        "live_adapter_batch_aborted",
                        remaining=len(quantities) - index,
                    )
                    break
                if quantity is Quantity.PROTOCOL:
                    results[quantity] = connection.protocol_name() or None
                    continue
                cmd = _resolve_command(obd, _COMMAND_NAMES.get(quantity, ""))
                if cmd is None:
                    results[quantity] = None
                    continue
                response = connection.query(cmd)
                if response.is_null():
                    results[quantity] = None
                    continue
                results[quantity] = _format_value(response.value)
        return results

    def _on_worker_done(self, worker: asyncio.Future) -> None:
        if worker.cancelled():
            return
        exc = worker.exception()
        # Awaited failures reach the caller; only report abandoned ones.
        if exc is not None and self._abort.is_set():
            logger.warning("live_adapter_batch_failed", error=str(exc))

    def _check_connected(self) -> None:
        if self._connection is None:
            raise RuntimeError("LiveAdapter is not connected")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _import_obd() -> Any:
    """Lazy-import python-OBD so it's only needed in live mode."""
    try:
        import obd  # type: ignore[import-untyped]
        return obd
    except ImportError as exc:
        raise ImportError(
            "python-OBD is required for live mode. "
            "Install it with: pip install obd"
        ) from exc


def _resolve_command(obd: Any, name: str) -> Any:
    """Map a command name to an ``obd.commands`` entry, or ``None``."""
    if not name:
        return None
    return getattr(obd.commands, name, None)


def _map_status(obd: Any, status: str) -> AdapterState:
    # OBD_CONNECTED (ignition off) still polls; fields just come back empty.
    connected = {
        str(getattr(obd.OBDStatus, name))
        for name in ("CAR_CONNECTED", "OBD_CONNECTED")
        if hasattr(obd.OBDStatus, name)
    }
    if status in connected:
        return AdapterState.CONNECTED
    if status == str(obd.OBDStatus.ELM_CONNECTED):
        # Adapter answers but no vehicle protocol could be negotiated.
        return AdapterState.UNSUPPORTED_PROTOCOL
    return AdapterState.GONE


def _format_value(value: Any) -> str:
    """Render a python-OBD value as ``"<number><U+202F><unit>"``."""
    magnitude = getattr(value, "magnitude", None)
    if magnitude is None:
        if isinstance(value, (bytes, bytearray)):
            return value.decode("ascii", errors="replace").strip()
        return str(value).strip()
    number = float(magnitude)
    text = str(int(number)) if number.is_integer() else str(round(number, 2))
    return f"{text}{UNIT_SEPARATOR}{value.units:~}"
