"""Thread-safe in-memory time series of telemetry samples.

The poll loop is the only writer; HTTP handlers read concurrently from
the server's thread pool.  Samples are kept oldest-first in a list that
is only ever appended to (``clear`` swaps in a fresh list), so a reader
takes the list and its length under the lock and then scans that prefix
without it.  The writer therefore never waits on a scan.

Public results are newest-first.  A trailing-window query walks back
from the newest sample and stops at the first one older than the
cutoff, so its cost tracks the window size rather than the store size.

There is no retention cap: the store grows for the life of the process.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

import structlog

from obd_loxone.schemas import TelemetrySample

logger = structlog.get_logger(__name__)


class TimeSeriesStore:
    """Newest-first sample series with append-if-not-older semantics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: List[TelemetrySample] = []

    # ------------------------------------------------------------------
    # Writer side (poll loop only)
    # ------------------------------------------------------------------

    def append(self, sample: TelemetrySample) -> bool:
        """Add *sample* as the newest entry.  Returns ``False`` if rejected.

        A sample captured strictly earlier than the newest stored one is
        dropped.  Equal timestamps are accepted.
        """
        with self._lock:
            if self._samples and sample.capture_time < self._samples[-1].capture_time:
                newest = self._samples[-1].capture_time
                rejected = True
            else:
                self._samples.append(sample)
                rejected = False

        if rejected:
            logger.warning(
                "sample_out_of_order",
                capture_time=sample.capture_time.isoformat(),
                newest_stored=newest.isoformat(),
            )
            return False
        return True

    def clear(self) -> None:
        """Drop every stored sample."""
        with self._lock:
            self._samples = []
        logger.info("store_cleared")

    # ------------------------------------------------------------------
    # Reader side
    # ------------------------------------------------------------------

    def _snapshot(self) -> Tuple[List[TelemetrySample], int]:
        # Entries below ``count`` never change once published.
        with self._lock:
            return self._samples, len(self._samples)

    def query_window(
        self,
        duration: timedelta,
        now: Optional[datetime] = None,
    ) -> List[TelemetrySample]:
        """Return samples captured within *duration* of *now*, newest first."""
        cutoff = (now or datetime.now(timezone.utc)) - duration
        samples, count = self._snapshot()
        result: List[TelemetrySample] = []
        for index in range(count - 1, -1, -1):
            sample = samples[index]
            if sample.capture_time < cutoff:
                break
            result.append(sample)
        return result

    def latest(self) -> Optional[TelemetrySample]:
        """Return the newest sample or *None* when empty."""
        samples, count = self._snapshot()
        return samples[count - 1] if count else None

    def samples(self) -> List[TelemetrySample]:
        """Return a newest-first copy of the whole series."""
        samples, count = self._snapshot()
        return samples[count - 1::-1] if count else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
