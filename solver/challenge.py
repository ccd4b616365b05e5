"""
Challenge visibility - tells the orchestrator whether a challenge is on screen,
where its image comes from, what the instruction says and where it is drawn.

The host page (browser extension or automation driver) publishes that state
as a small JSON file; ChallengeFileProbe reads it on every check.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from pydantic import BaseModel, Field, ValidationError

from .errors import ElementNotFound
from .screenshot import ScreenRegion


@dataclass(frozen=True)
class ChallengeView:
    """One observation of the challenge widget."""
    visible: bool
    image_locator: Optional[str] = None
    instruction: Optional[str] = None
    display: Optional[ScreenRegion] = None

    @classmethod
    def hidden(cls) -> "ChallengeView":
        return cls(visible=False)


class ChallengeProbe(Protocol):
    def check(self) -> ChallengeView:
        ...


class DisplayBox(BaseModel):
    """Bounding box of the displayed challenge image in screen pixels."""
    left: int = 0
    top: int = 0
    width: int = Field(ge=0)
    height: int = Field(ge=0)


class ChallengeState(BaseModel):
    """Schema of the challenge state file."""
    visible: bool = False
    image: Optional[str] = Field(default=None, description="URL, data: URL, path or screen:l,t,w,h")
    instruction: Optional[str] = Field(default=None, description="Challenge prompt text")
    display: Optional[DisplayBox] = None


class ChallengeFileProbe:
    """Reads the challenge state file written by the host page bridge."""

    def __init__(self, path: str):
        self.path = Path(path)

    def check(self) -> ChallengeView:
        try:
            payload = self.path.read_bytes()
        except FileNotFoundError:
            return ChallengeView.hidden()
        except OSError as exc:
            raise ElementNotFound(f"Could not read challenge state {self.path}: {exc}") from exc
        try:
            # the bridge may be caught mid-write
            state = ChallengeState.model_validate_json(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValidationError) as exc:
            raise ElementNotFound(f"Unreadable challenge state in {self.path}: {exc}") from exc

        if not state.visible:
            return ChallengeView.hidden()

        missing = []
        if not state.image:
            missing.append("image")
        if not state.instruction or not state.instruction.strip():
            missing.append("instruction")
        if state.display is None:
            missing.append("display")
        if missing:
            raise ElementNotFound(f"Challenge is visible but missing: {', '.join(missing)}")

        return ChallengeView(
            visible=True,
            image_locator=state.image,
            instruction=state.instruction.strip(),
            display=ScreenRegion(**state.display.model_dump()),
        )


class StaticChallengeProbe:
    """Replays a fixed sequence of views; the last one repeats."""

    def __init__(self, views: Sequence[ChallengeView]):
        if not views:
            raise ValueError("StaticChallengeProbe needs at least one view")
        self._views = list(views)
        self.checks = 0

    def check(self) -> ChallengeView:
        view = self._views[min(self.checks, len(self._views) - 1)]
        self.checks += 1
        return view
