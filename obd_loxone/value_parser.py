"""Parse numeric values out of formatted adapter / Miniserver strings.

Adapters report values like ``780<U+202F>rpm`` -- the number, a narrow
no-break space, then the unit.  Parsing keeps the part before the
separator and accepts it only if it is a plain decimal literal.  No
locale handling: ``"12,5"`` is a parse failure, not 12.5.  Anything
that does not fit yields ``None`` so the caller can mark the field
absent.
"""

from __future__ import annotations

import re
from typing import Optional

# Narrow no-break space (U+202F) is what adapters emit; plain no-break
# space (U+00A0) shows up on some firmware.
_UNIT_SEPARATORS = ("\u202f", "\u00a0")

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")


def strip_unit(text: str) -> str:
    """Return *text* up to the first unit separator, trimmed."""
    head = text
    for sep in _UNIT_SEPARATORS:
        head = head.split(sep, 1)[0]
    return head.strip()


def strip_suffix(text: str, suffix: str) -> str:
    """Drop a known trailing unit word, e.g. ``"31.0 Liter"`` -> ``"31.0"``."""
    text = text.strip()
    if suffix and text.endswith(suffix):
        text = text[: -len(suffix)]
    return text.strip()


def parse_int(text: Optional[str]) -> Optional[int]:
    """Parse the numeric prefix of *text* as an integer, else ``None``."""
    if text is None:
        return None
    head = strip_unit(text)
    if not _INT_RE.match(head):
        return None
    return int(head)


def parse_float(text: Optional[str]) -> Optional[float]:
    """Parse the numeric prefix of *text* as a float, else ``None``."""
    if text is None:
        return None
    head = strip_unit(text)
    if not _FLOAT_RE.match(head):
        return None
    return float(head)
