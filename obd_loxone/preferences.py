"""Durable user preferences backed by a JSON file.

Holds what the user configures by hand: tank capacity, last price and
unit tags, and a saved Miniserver URL.  A missing or unreadable file
falls back to defaults.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, ValidationError

from obd_loxone.units import LITER, PER_LITER

logger = structlog.get_logger(__name__)


class UserPreferences(BaseModel):
    """Named scalar/string values the user has saved."""

    model_config = {"extra": "ignore"}

    tank_capacity_liters: Optional[float] = None
    main_tank_price: Optional[float] = None
    main_tank_price_unit: str = PER_LITER
    main_tank_level_unit: str = LITER
    aux_tank_level_unit: str = LITER
    miniserver_url: Optional[str] = None


class PreferenceStore:
    """Get/set access to :class:`UserPreferences`, saved on every write."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._prefs = _load(self._path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            value = getattr(self._prefs, name)
        return default if value is None else value

    def set(self, name: str, value: Any) -> None:
        self.update(**{name: value})

    def update(self, **values: Any) -> None:
        """Set several preferences at once and persist them."""
        with self._lock:
            unknown = set(values) - set(UserPreferences.model_fields)
            if unknown:
                raise KeyError(f"Unknown preference(s): {', '.join(sorted(unknown))}")
            merged = self._prefs.model_dump()
            merged.update(values)
            self._prefs = UserPreferences.model_validate(merged)
            _save(self._path, self._prefs)

    def snapshot(self) -> UserPreferences:
        with self._lock:
            return self._prefs


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load(path: Path) -> UserPreferences:
    if not path.exists():
        return UserPreferences()
    try:
        with open(path, encoding="utf-8") as fh:
            return UserPreferences.model_validate(json.load(fh))
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("preferences_unreadable", path=str(path), error=str(exc))
        return UserPreferences()


def _save(path: Path, prefs: UserPreferences) -> None:
    """Write to a sibling temp file, then rename over *path*."""
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(prefs.model_dump_json(indent=2))
    os.replace(tmp, path)
