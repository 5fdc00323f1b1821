"""Small asyncio timing helpers shared by the background loops."""

from __future__ import annotations

import asyncio


async def interruptible_sleep(seconds: float, event: asyncio.Event) -> None:
    """Sleep for *seconds* but wake early if *event* is set."""
    try:
        await asyncio.wait_for(event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
