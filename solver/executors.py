"""
Pointer executor - performs the press-move-release gesture on the chosen glyph.
Timing between events is jittered so the gesture looks like a person clicking.
"""

import asyncio
from typing import Any, Optional, Tuple
from dataclasses import dataclass
from enum import Enum

from .config import config
from .errors import ActionFailure
from .layout import TargetPoint
from .screenshot import ScreenRegion
from .utils import log, random_delay


class MouseButton(Enum):
    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"


@dataclass
class ActionResult:
    """Result of a pointer action."""
    success: bool
    message: str
    position: Optional[Tuple[int, int]] = None


def _load_pyautogui() -> Any:
    import pyautogui

    # Disable pyautogui failsafe (corner abort would look like a failed click)
    pyautogui.FAILSAFE = False
    pyautogui.PAUSE = 0
    return pyautogui


class PointerExecutor:
    """Dispatches pointer gestures through pyautogui (or an injected backend)."""

    def __init__(
        self,
        backend: Any = None,
        settle_range: Optional[Tuple[float, float]] = None,
        hold_range: Optional[Tuple[float, float]] = None,
        move_duration: float = 0.1,
    ):
        self._backend = backend
        self.settle_range = settle_range or config.press_settle_range
        self.hold_range = hold_range or config.press_hold_range
        self.move_duration = move_duration

    @property
    def backend(self) -> Any:
        if self._backend is None:
            try:
                self._backend = _load_pyautogui()
            except Exception as exc:
                raise ActionFailure(f"Pointer backend unavailable: {exc}") from exc
        return self._backend

    async def press(
        self,
        target: TargetPoint,
        region: ScreenRegion,
        button: MouseButton = MouseButton.LEFT,
    ) -> ActionResult:
        """
        Move to the target, pause, press, hold briefly and release.

        Args:
            target: Point relative to the displayed challenge image
            region: Screen box of the displayed challenge image

        Raises:
            ActionFailure: the backend rejected any of the pointer events
        """
        x, y = region.to_absolute(target.x, target.y)
        backend = self.backend
        try:
            # the eased move sleeps for move_duration inside pyautogui
            await asyncio.to_thread(backend.moveTo, x, y, duration=self.move_duration)
            await random_delay(self.settle_range)
            backend.mouseDown(x=x, y=y, button=button.value)
            await random_delay(self.hold_range)
            backend.mouseUp(x=x, y=y, button=button.value)
        except Exception as exc:
            raise ActionFailure(f"Failed to click at ({x}, {y}): {exc}") from exc

        log(f"Clicked label {target.index} at ({x}, {y})", "info")
        return ActionResult(True, f"Clicked at ({x}, {y}) with {button.value} button", position=(x, y))

