"""
Utility functions for the captcha solver.
"""

import asyncio
import random
from typing import Tuple

from rich.console import Console

from .config import config


console = Console()

LOG_PREFIX = "[captcha-solver]"

LOG_STYLES = {
    "info": "blue",
    "success": "bold green",
    "warn": "yellow",
    "error": "bold red",
    "debug": "dim",
}


def log(message: str, tag: str = "info") -> None:
    """Print a tagged console line; silent unless debug output is enabled."""
    if not config.debug:
        return
    style = LOG_STYLES.get(tag, "")
    console.print(f"{LOG_PREFIX} {message}", style=style, markup=False, highlight=False)


async def random_delay(bounds: Tuple[float, float]) -> float:
    """Sleep for a uniformly random duration within bounds and return it."""
    low, high = bounds
    duration = random.uniform(low, high)
    await asyncio.sleep(duration)
    return duration


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
