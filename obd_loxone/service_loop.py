"""Process main loop: wires the services and runs them until shutdown.

Three things run side by side on one event loop:

* the adapter poller (started by the adapter's ``Connected`` notification),
* the Miniserver relay timer,
* the uvicorn HTTP server.

A small supervisor reconnects the adapter after it goes away.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

import structlog
import uvicorn

from obd_loxone.adapter.base import AdapterState, DiagnosticAdapter
from obd_loxone.api import create_app
from obd_loxone.config import ServiceSettings
from obd_loxone.poller import AdapterPoller
from obd_loxone.relay import UpstreamRelay, run_relay_loop
from obd_loxone.services import Services
from obd_loxone.timing import interruptible_sleep

logger = structlog.get_logger(__name__)


def create_adapter(settings: ServiceSettings) -> DiagnosticAdapter:
    """Factory: return the right adapter for the current config.

    ``LiveAdapter`` is imported lazily so simulation mode works without
    the GPL-licensed ``python-obd`` package installed.
    """
    if settings.is_simulation:
        from obd_loxone.adapter.simulation import SimulationAdapter

        return SimulationAdapter(scenario=settings.obd_sim_scenario)

    # Lazy import keeps GPL dependency out of sim/CI environments.
    from obd_loxone.adapter.live import LiveAdapter

    return LiveAdapter(
        port=settings.obd_port,
        baudrate=settings.obd_baudrate,
        timeout=settings.fetch_timeout_seconds,
    )


def create_poller(
    adapter: DiagnosticAdapter, services: Services
) -> AdapterPoller:
    settings = services.settings
    return AdapterPoller(
        adapter,
        services.store,
        services.process_state,
        interval=settings.poll_interval_seconds,
        fetch_timeout=settings.fetch_timeout_seconds,
        capacity_provider=services.tank_capacity_liters,
    )


async def run_service(
    settings: ServiceSettings,
    *,
    once: bool = False,
    relay_enabled: Optional[bool] = None,
) -> None:
    """Run the telemetry service.

    Parameters
    ----------
    settings:
        Fully-resolved service configuration.
    once:
        If ``True``, run a single poll cycle without the HTTP server.
    relay_enabled:
        Overrides ``settings.relay_enabled`` when not ``None``.
    """
    services = Services.from_settings(settings)
    adapter = create_adapter(settings)
    poller = create_poller(adapter, services)

    if once:
        await run_single_cycle(adapter, poller)
        return

    shutdown_event = asyncio.Event()

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown)
    # On Windows, SIGINT is handled by the default KeyboardInterrupt.

    if relay_enabled is None:
        relay_enabled = settings.relay_enabled

    relay = UpstreamRelay(
        settings,
        services.process_state.set_spare_tank_level,
        url_provider=services.miniserver_url,
    )
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(services),
            host=settings.http_host,
            port=settings.http_port,
            log_config=None,
            log_level=settings.log_level.lower(),
        )
    )

    poller.attach()
    await relay.start()
    server_task = asyncio.create_task(server.serve())
    background = [
        asyncio.create_task(supervise_connection(adapter, settings, shutdown_event))
    ]
    if relay_enabled:
        background.append(
            asyncio.create_task(
                run_relay_loop(relay, settings.relay_interval_seconds, shutdown_event)
            )
        )

    try:
        await _wait_for_shutdown(shutdown_event, server_task)
    finally:
        shutdown_event.set()
        await poller.stop()
        poller.detach()
        await asyncio.wait(background)
        server.should_exit = True
        try:
            await server_task
        except Exception:
            logger.exception("http_server_failed")
        await adapter.disconnect()
        await relay.close()
        logger.info("service_stopped", samples=len(services.store))


async def run_single_cycle(
    adapter: DiagnosticAdapter, poller: AdapterPoller
) -> None:
    """Connect, identify, poll once, disconnect."""
    await adapter.connect()
    try:
        if adapter.state is not AdapterState.CONNECTED:
            logger.error("adapter_not_connected", state=adapter.state.value)
            return
        await poller.identify()
        sample = await poller.poll_once()
        if sample is None:
            logger.error("single_cycle_failed")
            return
        logger.info("sample", **sample.to_json_dict())
    finally:
        await adapter.disconnect()


async def supervise_connection(
    adapter: DiagnosticAdapter,
    settings: ServiceSettings,
    shutdown_event: asyncio.Event,
) -> None:
    """Connect, and reconnect whenever the adapter drops away.

    An unsupported vehicle protocol ends supervision for this session.
    """
    while not shutdown_event.is_set():
        if adapter.state in (AdapterState.DISCONNECTED, AdapterState.GONE):
            try:
                await adapter.connect()
            except Exception:
                logger.exception("adapter_connect_failed")

        if adapter.state is AdapterState.UNSUPPORTED_PROTOCOL:
            logger.warning(
                "adapter_protocol_unsupported",
                protocol=adapter.protocol_name,
                hint="polling stays off until the service is restarted",
            )
            return

        await interruptible_sleep(settings.reconnect_interval_seconds, shutdown_event)


async def _wait_for_shutdown(
    shutdown_event: asyncio.Event, server_task: asyncio.Task
) -> None:
    """Return when shutdown is requested or the HTTP server exits."""
    waiter = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait(
            {waiter, server_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        waiter.cancel()
