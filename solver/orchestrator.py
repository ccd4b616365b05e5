"""
Solve orchestrator - sequences detection, segmentation, classification, the
click and its verification, with single-flight gating, cooldown and bounded
retries.

One solve:
1. Detecting   - skip if busy or cooling down, stop if no challenge is shown
2. Segmenting  - fetch the image, binarize, extract and label glyph boxes
3. Classifying - ask the classifier which label matches the instruction
4. Acting      - map the label to a display point and click it
5. Verifying   - wait, then check the challenge closed
Classifier, click and verification failures wait and loop back to 1 until the
retry budget runs out. Structural failures abort immediately.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from PIL import Image

from .challenge import ChallengeProbe, ChallengeView
from .classifier import ClassifierGateway
from .config import SolverConfig, config
from .errors import ElementNotFound, NoGlyphsFound, SolverError, VerificationTimeout
from .executors import PointerExecutor
from .image_source import ImageSource
from .layout import BoxLayout, ScaleFactors, TargetPoint
from .overlay import annotate, to_base64
from .raster import Raster, binarize
from .screenshot import ScreenRegion
from .segmentation import find_components
from .utils import log as default_log


class SolvePhase(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    SEGMENTING = "segmenting"
    CLASSIFYING = "classifying"
    ACTING = "acting"
    VERIFYING = "verifying"
    RETRY_WAIT = "retry_wait"


class SolveStatus(Enum):
    """Terminal result of one run_once() call."""
    SOLVED = "solved"
    NO_CHALLENGE = "no_challenge"
    SKIPPED = "skipped"  # busy or cooling down, not a failure
    ABORTED = "aborted"
    GAVE_UP = "gave_up"

    @property
    def succeeded(self) -> bool:
        return self is SolveStatus.SOLVED


@dataclass
class SolveState:
    """Mutable orchestrator state; only SolveOrchestrator writes it."""
    busy: bool = False
    last_attempt_at: Optional[float] = None
    retry_count: int = 0
    max_retries: int = 3
    attempts: int = 0
    phase: SolvePhase = SolvePhase.IDLE


@dataclass
class Segmentation:
    layout: BoxLayout
    annotated: Image.Image


@dataclass
class Selection:
    """Classifier answer resolved against one image."""
    index: int
    target: TargetPoint
    layout: BoxLayout
    annotated: Image.Image
    scale: ScaleFactors


@dataclass
class SolveOutcome:
    status: SolveStatus
    reason: str
    attempts: int = 0
    index: Optional[int] = None
    target: Optional[TargetPoint] = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


class SolveOrchestrator:
    """
    Drives the solve state machine for one challenge widget.

    The clock and sleep functions are injectable so tests can run the timing
    rules without real waiting.
    """

    def __init__(
        self,
        gateway: ClassifierGateway,
        probe: ChallengeProbe,
        image_source: Optional[ImageSource] = None,
        pointer: Optional[PointerExecutor] = None,
        cfg: Optional[SolverConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_outcome: Optional[Callable[[SolveOutcome], None]] = None,
        log_callback: Optional[Callable[[str, str], None]] = None,
    ):
        self.cfg = cfg or config
        self.gateway = gateway
        self.probe = probe
        self.image_source = image_source or ImageSource()
        self.pointer = pointer or PointerExecutor(
            settle_range=self.cfg.press_settle_range,
            hold_range=self.cfg.press_hold_range,
        )
        self.clock = clock
        self.sleep = sleep
        self.on_outcome = on_outcome
        self._log = log_callback or default_log
        self.state = SolveState(max_retries=self.cfg.max_retries)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def segment(self, raster: Raster) -> Segmentation:
        """Binarize, extract and label glyph boxes on the colour original."""
        mask = binarize(raster, self.cfg.binary_threshold)
        layout = BoxLayout(find_components(mask, self.cfg.min_contour_area))
        self._log(f"Detected {len(layout)} glyph boxes", "info")
        if not layout:
            raise NoGlyphsFound(
                f"No component larger than {self.cfg.min_contour_area} px at threshold {self.cfg.binary_threshold}"
            )
        return Segmentation(layout=layout, annotated=annotate(raster.to_image(), layout))

    def resolve(
        self,
        segmentation: Segmentation,
        index: int,
        raster: Raster,
        display: Optional[ScreenRegion],
    ) -> Selection:
        if display is not None:
            scale = ScaleFactors.from_sizes(display.width, display.height, raster.width, raster.height)
        else:
            scale = ScaleFactors()
        target = segmentation.layout.resolve_target(index, scale)
        return Selection(
            index=index,
            target=target,
            layout=segmentation.layout,
            annotated=segmentation.annotated,
            scale=scale,
        )

    async def locate(
        self,
        raster: Raster,
        instruction: str,
        display: Optional[ScreenRegion] = None,
    ) -> Selection:
        """Segment, classify and resolve a target without clicking anything."""
        segmentation = self.segment(raster)
        index = await self.gateway.classify(to_base64(segmentation.annotated), instruction)
        return self.resolve(segmentation, index, raster, display)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def cooldown_remaining(self) -> float:
        if self.state.last_attempt_at is None:
            return 0.0
        elapsed = self.clock() - self.state.last_attempt_at
        return max(0.0, self.cfg.cooldown - elapsed)

    def _outcome(
        self,
        status: SolveStatus,
        reason: str,
        started: float,
        attempts: int = 0,
        index: Optional[int] = None,
        target: Optional[TargetPoint] = None,
    ) -> SolveOutcome:
        return SolveOutcome(
            status=status,
            reason=reason,
            attempts=attempts,
            index=index,
            target=target,
            duration=self.clock() - started,
        )

    async def run_once(self) -> SolveOutcome:
        """
        Run one solve if the gate allows it.

        Returns:
            SolveOutcome; SKIPPED when busy or cooling down, NO_CHALLENGE when
            nothing is shown, otherwise the terminal result of the solve
        """
        started = self.clock()
        state = self.state

        if state.busy:
            self._log("Solve in progress, skipping this check", "debug")
            return self._outcome(SolveStatus.SKIPPED, "Solve already in progress", started)
        remaining = self.cooldown_remaining()
        if remaining > 0:
            self._log(f"Cooling down ({remaining:.1f}s left), skipping this check", "debug")
            return self._outcome(SolveStatus.SKIPPED, "Cooling down", started)

        state.phase = SolvePhase.DETECTING
        try:
            view = self.probe.check()
        except ElementNotFound as exc:
            state.phase = SolvePhase.IDLE
            return self._notify(self._outcome(SolveStatus.ABORTED, str(exc), started))
        if not view.visible:
            state.retry_count = 0
            state.phase = SolvePhase.IDLE
            return self._outcome(SolveStatus.NO_CHALLENGE, "No challenge visible", started)

        self._log("Challenge detected", "warn")
        state.busy = True
        try:
            outcome = await self._solve(view, started)
        finally:
            state.busy = False
            state.phase = SolvePhase.IDLE
        return self._notify(outcome)

    async def _solve(self, view: ChallengeView, started: float) -> SolveOutcome:
        state = self.state
        attempts = 0

        while True:
            attempts += 1
            state.attempts += 1
            state.last_attempt_at = self.clock()
            self._log(f"Starting attempt {attempts} (total {state.attempts})", "info")

            try:
                selection = await self._attempt(view)
            except SolverError as exc:
                if not exc.retryable:
                    self._log(f"Attempt aborted: {exc}", "error")
                    return self._outcome(SolveStatus.ABORTED, str(exc), started, attempts=attempts)

                state.retry_count += 1
                if state.retry_count >= state.max_retries:
                    state.retry_count = 0
                    self._log(f"Max retries reached, giving up: {exc}", "error")
                    return self._outcome(
                        SolveStatus.GAVE_UP,
                        f"Gave up after {attempts} attempts: {exc}",
                        started,
                        attempts=attempts,
                    )

                self._log(
                    f"{exc} - retrying in {self.cfg.retry_delay:.0f}s ({state.retry_count}/{state.max_retries})",
                    "warn",
                )
                state.phase = SolvePhase.RETRY_WAIT
                await self.sleep(self.cfg.retry_delay)

                state.phase = SolvePhase.DETECTING
                try:
                    view = self.probe.check()
                except ElementNotFound as exc:
                    return self._outcome(SolveStatus.ABORTED, str(exc), started, attempts=attempts)
                if not view.visible:
                    state.retry_count = 0
                    return self._outcome(
                        SolveStatus.NO_CHALLENGE,
                        "Challenge closed while waiting to retry",
                        started,
                        attempts=attempts,
                    )
                remaining = self.cooldown_remaining()
                if remaining > 0:
                    await self.sleep(remaining)
                continue

            state.retry_count = 0
            self._log("Challenge closed, solved!", "success")
            return self._outcome(
                SolveStatus.SOLVED,
                f"Clicked label {selection.index}",
                started,
                attempts=attempts,
                index=selection.index,
                target=selection.target,
            )

    async def _attempt(self, view: ChallengeView) -> Selection:
        state = self.state
        if view.display is None:
            raise ElementNotFound("Challenge image has no measured display box")
        if not view.instruction:
            raise ElementNotFound("Challenge instruction text is missing")

        state.phase = SolvePhase.SEGMENTING
        await self.sleep(self.cfg.detect_delay)
        raster = await self.image_source.fetch(view.image_locator)
        segmentation = self.segment(raster)

        state.phase = SolvePhase.CLASSIFYING
        self._log(f"Instruction: {view.instruction}", "info")
        index = await self.gateway.classify(to_base64(segmentation.annotated), view.instruction)
        self._log(f"Classifier picked label {index}", "success")

        state.phase = SolvePhase.ACTING
        selection = self.resolve(segmentation, index, raster, view.display)
        await self.pointer.press(selection.target, view.display)

        state.phase = SolvePhase.VERIFYING
        await self.sleep(self.cfg.settle_delay)
        try:
            still_visible = self.probe.check().visible
        except ElementNotFound:
            still_visible = True
        if still_visible:
            raise VerificationTimeout("Challenge still visible after click")
        return selection

    def _notify(self, outcome: SolveOutcome) -> SolveOutcome:
        if self.on_outcome and outcome.status not in (SolveStatus.SKIPPED, SolveStatus.NO_CHALLENGE):
            self.on_outcome(outcome)
        return outcome

    async def watch(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_polls: Optional[int] = None,
    ) -> List[SolveOutcome]:
        """
        Poll for challenges every check_interval seconds.

        Returns:
            The outcomes of every solve that actually ran (skips and empty
            checks are left out)
        """
        results: List[SolveOutcome] = []
        polls = 0
        while not (stop_event and stop_event.is_set()):
            if max_polls is not None and polls >= max_polls:
                break
            polls += 1
            outcome = await self.run_once()
            if outcome.status not in (SolveStatus.SKIPPED, SolveStatus.NO_CHALLENGE):
                results.append(outcome)
            await self.sleep(self.cfg.check_interval)
        return results
