"""OBD Loxone -- vehicle telemetry relay.

Polls an ELM327 adapter (or simulation), keeps a rolling window of
samples in memory, relays the spare-tank gauge from a Loxone
Miniserver, and serves the aggregate state over a local HTTP API.
"""

__version__ = "0.1.0"
