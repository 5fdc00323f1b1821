"""HTTP client that pulls the spare-tank gauge from a Loxone Miniserver.

The Miniserver is reached through Loxone's cloud DNS, which answers the
first (anonymous) request with a redirect to the Miniserver's own
address.  Credentials belong to the Miniserver only, so the redirect is
not followed automatically: the relay reads the ``Location`` header and
issues a second request there with HTTP Basic auth attached.

Features:
* Overlapping fetches are skipped, not queued (``is_fetching``).
* Any network, status or payload problem logs and keeps the previous
  value; the callback only ever sees successfully parsed numbers.
* ``run_relay_loop`` drives fetches on a fixed timer.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Set

import httpx
import structlog

from obd_loxone.config import ServiceSettings
from obd_loxone.timing import interruptible_sleep
from obd_loxone.value_parser import parse_float, strip_suffix

logger = structlog.get_logger(__name__)

# {"LL": {"control": "...", "value": "31.0 Liter", "Code": "200"}}
_VALUE_SUFFIX = "Liter"

ValueCallback = Callable[[float], None]


class UpstreamRelay:
    """Fetches one numeric gauge value and hands it to *on_value*."""

    def __init__(
        self,
        settings: ServiceSettings,
        on_value: ValueCallback,
        *,
        url: Optional[str] = None,
        url_provider: Optional[Callable[[], str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url or settings.miniserver_url
        self._url_provider = url_provider
        self._auth = httpx.BasicAuth(
            settings.miniserver_username, settings.miniserver_password
        )
        self._timeout = settings.relay_timeout_seconds
        self._on_value = on_value
        self._client = client
        self._owns_client = client is None
        self._is_fetching = False

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=False
            )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # -- public API ---------------------------------------------------------

    @property
    def is_fetching(self) -> bool:
        return self._is_fetching

    @property
    def url(self) -> str:
        """Current target; a provider is consulted on every fetch."""
        if self._url_provider is not None:
            return self._url_provider()
        return self._url

    async def fetch_spare_tank_value(self) -> Optional[float]:
        """Run one fetch cycle.  Returns the value, or ``None``.

        ``None`` means the cycle was skipped (another one is in flight)
        or failed; in both cases the callback is not invoked.
        """
        if self._is_fetching:
            logger.info("relay_fetch_skipped", reason="fetch_in_flight")
            return None

        self._is_fetching = True
        try:
            value = await self._fetch()
        finally:
            self._is_fetching = False

        if value is not None:
            logger.info("relay_value_received", value=value)
            self._on_value(value)
        return value

    # -- internal -----------------------------------------------------------

    async def _fetch(self) -> Optional[float]:
        if self._client is None:
            raise RuntimeError("UpstreamRelay.start() must be called before fetching")

        url = self.url
        try:
            response = await self._client.get(url, follow_redirects=False)
            if response.is_redirect:
                target = response.url.join(response.headers["location"])
                logger.info(
                    "relay_redirected",
                    status=response.status_code,
                    host=target.host,
                )
                response = await self._client.get(
                    target, auth=self._auth, follow_redirects=False
                )
        except httpx.RequestError as exc:
            logger.warning("relay_network_error", error=str(exc), url=url)
            return None

        if not response.is_success:
            logger.warning(
                "relay_unexpected_status",
                status=response.status_code,
                body=response.text[:200],
            )
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("relay_invalid_json", body=response.text[:200])
            return None

        value = parse_gauge_payload(payload)
        if value is None:
            logger.warning("relay_payload_unparsed", body=response.text[:200])
        return value


def parse_gauge_payload(payload: Any) -> Optional[float]:
    """Extract the number from ``{"LL": {"value": "<number> Liter"}}``."""
    if not isinstance(payload, dict):
        return None
    inner = payload.get("LL")
    if not isinstance(inner, dict):
        return None
    text = inner.get("value")
    if not isinstance(text, str):
        return None
    return parse_float(strip_suffix(text, _VALUE_SUFFIX))


async def run_relay_loop(
    relay: UpstreamRelay,
    interval: float,
    stop_event: asyncio.Event,
) -> None:
    """Start a relay fetch every *interval* seconds until *stop_event*.

    Fetches run as their own tasks so a slow Miniserver does not stretch
    the timer; a tick that finds a fetch still in flight is skipped.
    """
    in_flight: Set[asyncio.Task] = set()
    logger.info("relay_loop_started", interval=interval, url=relay.url)
    try:
        while not stop_event.is_set():
            if relay.is_fetching:
                logger.debug("relay_tick_skipped")
            else:
                task = asyncio.create_task(relay.fetch_spare_tank_value())
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
            await interruptible_sleep(interval, stop_event)
    finally:
        if in_flight:
            await asyncio.wait(in_flight)
        logger.info("relay_loop_stopped")
