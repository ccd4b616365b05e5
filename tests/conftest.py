"""
Pytest configuration and shared fixtures.
"""
import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from solver.config import SolverConfig
from solver.raster import Mask, Raster


WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


def _fill(width, height, boxes, fg, bg):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = bg
    pixels[:, :, 3] = 255
    for min_x, min_y, max_x, max_y in boxes:
        pixels[min_y:max_y + 1, min_x:max_x + 1, :3] = fg
    return pixels


@pytest.fixture
def raster_factory():
    """Build an RGBA raster with filled rectangles given as inclusive (min_x, min_y, max_x, max_y)."""
    def make(width, height, boxes=(), fg=BLACK, bg=WHITE):
        return Raster.from_array(_fill(width, height, boxes, fg, bg))
    return make


@pytest.fixture
def mask_factory():
    """Build a mask with foreground rectangles given as inclusive bounds."""
    def make(width, height, boxes=()):
        values = np.zeros((height, width), dtype=np.uint8)
        for min_x, min_y, max_x, max_y in boxes:
            values[min_y:max_y + 1, min_x:max_x + 1] = 1
        return Mask.from_array(values)
    return make


@pytest.fixture
def solver_config():
    """Config with fixed values so tests do not depend on the environment."""
    return SolverConfig(
        api_url="http://classifier.test/v1",
        api_key="test-key",
        model="test-model",
        binary_threshold=210,
        min_contour_area=50,
        max_retries=3,
        challenge_file="challenge.json",
        settings_path="settings.json",
        debug=False,
    )


@pytest.fixture
def quiet_log():
    lines = []

    def log(message, tag="info"):
        lines.append((tag, message))

    log.lines = lines
    return log


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()


def completion(content):
    """Minimal stand-in for a chat completions response."""
    return SimpleNamespace(
        error=None,
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
    )


class FakeCompletions:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeOpenAIClient:
    def __init__(self, *results):
        self.completions = FakeCompletions(results)
        self.chat = SimpleNamespace(completions=self.completions)
