"""CLI entry point: ``python -m obd_loxone [--once] [--no-relay]``."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog


def _configure_logging(level: str, fmt: str) -> None:
    """Set up structlog with console or JSON rendering."""
    import logging

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
    )

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="obd_loxone",
        description="OBD-II telemetry relay for Loxone",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        default=False,
        help="Run a single poll cycle, log the sample, then exit",
    )
    parser.add_argument(
        "--no-relay",
        action="store_true",
        default=False,
        help="Do not poll the Miniserver for the spare-tank value",
    )
    args = parser.parse_args()

    # Load settings from env / .env file first, then override with CLI flags.
    from obd_loxone.config import ServiceSettings

    settings = ServiceSettings()
    if args.no_relay:
        settings.relay_enabled = False

    _configure_logging(settings.log_level, settings.log_format)

    logger = structlog.get_logger("obd_loxone")
    logger.info(
        "service_starting",
        version=__import__("obd_loxone").__version__,
        mode="simulation" if settings.is_simulation else "live",
        once=args.once,
        port=settings.obd_port,
        http_port=settings.http_port,
        relay_enabled=settings.relay_enabled,
    )

    from obd_loxone.service_loop import run_service

    try:
        asyncio.run(run_service(settings, once=args.once))
    except KeyboardInterrupt:
        logger.info("service_interrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
