"""Diagnostic adapter abstraction layer.

Provides ``DiagnosticAdapter`` ABC with two concrete implementations:

* ``SimulationAdapter`` -- fixture-based, no hardware required.
* ``LiveAdapter``       -- wraps python-OBD (GPL-2.0, lazy-imported).
"""

from obd_loxone.adapter.base import (
    AdapterBusyError,
    AdapterState,
    DiagnosticAdapter,
    Quantity,
)

__all__ = ["AdapterBusyError", "AdapterState", "DiagnosticAdapter", "Quantity"]
