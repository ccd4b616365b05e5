"""
Screen regions and region capture.
The challenge image's on-screen box doubles as the display-size measurement
for scale correction and as the origin for pointer coordinates.
"""

import ctypes
from typing import Optional, Tuple
from dataclasses import dataclass

import mss
from PIL import Image

from .raster import Raster


@dataclass(frozen=True)
class ScreenRegion:
    """Represents a region of the screen."""
    left: int
    top: int
    width: int
    height: int

    def to_absolute(self, x: float, y: float) -> Tuple[int, int]:
        """Convert a point relative to this region into screen coordinates."""
        return (int(round(self.left + x)), int(round(self.top + y)))

    @classmethod
    def parse(cls, text: str) -> "ScreenRegion":
        """Parse "left,top,width,height"."""
        try:
            left, top, width, height = (int(float(part)) for part in text.split(","))
        except ValueError:
            raise ValueError(f"Expected 'left,top,width,height', got {text!r}") from None
        return cls(left=left, top=top, width=width, height=height)


class ScreenCapture:
    """Captures screen regions with DPI awareness."""

    def __init__(self):
        self._setup_dpi_awareness()

    def _setup_dpi_awareness(self):
        """Set DPI awareness on Windows for accurate coordinates."""
        try:
            ctypes.windll.shcore.SetProcessDpiAwareness(2)
        except Exception:
            try:
                ctypes.windll.user32.SetProcessDPIAware()
            except Exception:
                pass  # Not on Windows or already set

    def capture_region(self, region: ScreenRegion) -> Image.Image:
        """Capture a specific region of the screen."""
        monitor = {
            "left": region.left,
            "top": region.top,
            "width": region.width,
            "height": region.height,
        }
        # mss handles are thread-bound and captures run in worker threads
        with mss.mss() as sct:
            screenshot = sct.grab(monitor)
        return Image.frombytes("RGB", screenshot.size, screenshot.bgra, "raw", "BGRX")

    def capture_raster(self, region: ScreenRegion) -> Raster:
        return Raster.from_image(self.capture_region(region))


# Singleton instance
_capture_instance: Optional[ScreenCapture] = None


def get_screen_capture() -> ScreenCapture:
    """Get or create the screen capture singleton."""
    global _capture_instance
    if _capture_instance is None:
        _capture_instance = ScreenCapture()
    return _capture_instance
