"""
Tests for the solve state machine: gating, cooldown, retries and aborts.
"""
import asyncio

import pytest

from solver.challenge import ChallengeFileProbe, ChallengeView, StaticChallengeProbe
from solver.errors import ClassifierError, ElementNotFound, FetchFailure, NoIndexFound, TransportFailure
from solver.orchestrator import SolveOrchestrator, SolvePhase, SolveStatus
from solver.screenshot import ScreenRegion


DISPLAY = ScreenRegion(left=100, top=200, width=200, height=80)
SHOWN = ChallengeView(visible=True, image_locator="glyphs.png", instruction="Click the bird", display=DISPLAY)
HIDDEN = ChallengeView.hidden()


class FakeGateway:
    """Scripted classifier; the last result repeats."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def classify(self, image_b64, instruction):
        self.calls.append(instruction)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeImageSource:
    def __init__(self, raster=None, error=None):
        self.raster = raster
        self.error = error
        self.locators = []

    async def fetch(self, locator):
        self.locators.append(locator)
        if self.error:
            raise self.error
        return self.raster


class FakePointer:
    def __init__(self):
        self.presses = []

    async def press(self, target, region):
        self.presses.append((target, region))


@pytest.fixture
def glyph_raster(raster_factory):
    # three 8x8 glyphs, displayed at twice their native size
    return raster_factory(100, 40, boxes=[(10, 10, 17, 17), (40, 10, 47, 17), (70, 10, 77, 17)])


@pytest.fixture
def build(solver_config, fake_clock, quiet_log, glyph_raster):
    def make(views, gateway, image_source=None, **kwargs):
        pointer = FakePointer()
        orchestrator = SolveOrchestrator(
            gateway=gateway,
            probe=StaticChallengeProbe(views),
            image_source=image_source or FakeImageSource(glyph_raster),
            pointer=pointer,
            cfg=solver_config,
            clock=fake_clock,
            sleep=fake_clock.sleep,
            log_callback=quiet_log,
            **kwargs,
        )
        return orchestrator, pointer
    return make


def test_solves_visible_challenge(build):
    gateway = FakeGateway(2)
    orchestrator, pointer = build([SHOWN, HIDDEN], gateway)

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.SOLVED
    assert outcome.index == 2
    assert outcome.attempts == 1
    ((target, region),) = pointer.presses
    assert (target.x, target.y) == (87.0, 27.0)
    assert region == DISPLAY
    assert gateway.calls == ["Click the bird"]
    assert orchestrator.state.busy is False
    assert orchestrator.state.phase is SolvePhase.IDLE
    assert orchestrator.state.retry_count == 0


def test_no_challenge_resets_retry_count(build):
    orchestrator, pointer = build([HIDDEN], FakeGateway(1))
    orchestrator.state.retry_count = 2

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.NO_CHALLENGE
    assert orchestrator.state.retry_count == 0
    assert pointer.presses == []


def test_cooldown_skips_then_expires(build, fake_clock):
    orchestrator, _ = build([SHOWN, HIDDEN], FakeGateway(1))

    assert asyncio.run(orchestrator.run_once()).status is SolveStatus.SOLVED
    # detect and settle delays have used 2s of the 3s cooldown
    assert orchestrator.cooldown_remaining() == pytest.approx(1.0)

    skipped = asyncio.run(orchestrator.run_once())
    assert skipped.status is SolveStatus.SKIPPED
    assert skipped.reason == "Cooling down"
    checks = orchestrator.probe.checks

    fake_clock.advance(1.0)
    assert asyncio.run(orchestrator.run_once()).status is SolveStatus.NO_CHALLENGE
    assert orchestrator.probe.checks == checks + 1


def test_second_trigger_while_busy_is_skipped(build):
    class BlockingGateway(FakeGateway):
        async def classify(self, image_b64, instruction):
            self.entered.set()
            await self.release.wait()
            return await super().classify(image_b64, instruction)

    async def scenario():
        gateway = BlockingGateway(1)
        gateway.entered = asyncio.Event()
        gateway.release = asyncio.Event()
        orchestrator, pointer = build([SHOWN, HIDDEN], gateway)

        first = asyncio.create_task(orchestrator.run_once())
        await gateway.entered.wait()
        assert orchestrator.state.busy is True
        assert orchestrator.state.phase is SolvePhase.CLASSIFYING

        second = await orchestrator.run_once()
        gateway.release.set()
        return await first, second, pointer

    first, second, pointer = asyncio.run(scenario())

    assert second.status is SolveStatus.SKIPPED
    assert second.reason == "Solve already in progress"
    assert first.status is SolveStatus.SOLVED
    assert len(pointer.presses) == 1


def test_gives_up_after_max_retries(build, fake_clock):
    gateway = FakeGateway(NoIndexFound("I am not sure"))
    orchestrator, pointer = build([SHOWN], gateway)

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.GAVE_UP
    assert outcome.attempts == 3
    assert len(gateway.calls) == 3
    assert pointer.presses == []
    assert orchestrator.state.retry_count == 0
    assert fake_clock.sleeps.count(3.0) == 2


def test_out_of_range_index_is_retried(build):
    gateway = FakeGateway(7, 2)
    orchestrator, pointer = build([SHOWN, SHOWN, HIDDEN], gateway)

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.SOLVED
    assert outcome.attempts == 2
    assert outcome.index == 2
    assert len(pointer.presses) == 1


def test_challenge_still_visible_after_click_is_retried(build):
    orchestrator, pointer = build([SHOWN, SHOWN, SHOWN, HIDDEN], FakeGateway(3))

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.SOLVED
    assert outcome.attempts == 2
    assert len(pointer.presses) == 2


def test_fetch_failure_aborts_without_classifying(build):
    gateway = FakeGateway(1)
    orchestrator, pointer = build([SHOWN], gateway, image_source=FakeImageSource(error=FetchFailure("HTTP 404")))

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.ABORTED
    assert outcome.reason == "HTTP 404"
    assert gateway.calls == []
    assert pointer.presses == []


def test_blank_image_aborts(build, raster_factory):
    gateway = FakeGateway(1)
    orchestrator, _ = build([SHOWN], gateway, image_source=FakeImageSource(raster_factory(50, 20)))

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.ABORTED
    assert gateway.calls == []


def test_missing_display_box_aborts(build):
    view = ChallengeView(visible=True, image_locator="glyphs.png", instruction="Click the bird")
    orchestrator, _ = build([view], FakeGateway(1))

    assert asyncio.run(orchestrator.run_once()).status is SolveStatus.ABORTED


def test_challenge_closed_while_waiting_to_retry(build):
    gateway = FakeGateway(NoIndexFound(""))
    orchestrator, _ = build([SHOWN, HIDDEN], gateway)

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.NO_CHALLENGE
    assert outcome.reason == "Challenge closed while waiting to retry"
    assert orchestrator.state.retry_count == 0
    assert len(gateway.calls) == 1


def test_outcomes_are_reported(build):
    reported = []
    orchestrator, _ = build([SHOWN, HIDDEN], FakeGateway(1), on_outcome=reported.append)

    asyncio.run(orchestrator.run_once())
    asyncio.run(orchestrator.run_once())

    assert [o.status for o in reported] == [SolveStatus.SOLVED]


def test_watch_collects_solves(build, fake_clock):
    orchestrator, pointer = build([HIDDEN, SHOWN, HIDDEN], FakeGateway(1))

    outcomes = asyncio.run(orchestrator.watch(max_polls=3))

    assert [o.status for o in outcomes] == [SolveStatus.SOLVED]
    assert len(pointer.presses) == 1
    assert fake_clock.sleeps.count(2.0) == 3


def test_watch_stops_on_event(build):
    orchestrator, _ = build([HIDDEN], FakeGateway(1))
    stop = asyncio.Event()
    stop.set()

    assert asyncio.run(orchestrator.watch(stop_event=stop)) == []
    assert orchestrator.probe.checks == 0


def test_locate_resolves_without_clicking(build, glyph_raster):
    orchestrator, pointer = build([SHOWN], FakeGateway(3))

    selection = asyncio.run(orchestrator.locate(glyph_raster, "Click the bird", DISPLAY))

    assert selection.index == 3
    assert (selection.target.x, selection.target.y) == (147.0, 27.0)
    assert selection.scale.scale_x == 2.0
    assert len(selection.layout) == 3
    assert pointer.presses == []


class FlakyProbe(StaticChallengeProbe):
    """Raises ElementNotFound on the listed check numbers (1-based)."""

    def __init__(self, views, failing_checks):
        super().__init__(views)
        self.failing_checks = set(failing_checks)

    def check(self):
        view = super().check()
        if self.checks in self.failing_checks:
            raise ElementNotFound("Instruction element detached")
        return view


def test_unreadable_challenge_during_verification_is_retried(build):
    orchestrator, pointer = build([SHOWN, SHOWN, SHOWN, HIDDEN], FakeGateway(1))
    orchestrator.probe = FlakyProbe([SHOWN, SHOWN, SHOWN, HIDDEN], failing_checks={2})

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.SOLVED
    assert outcome.attempts == 2
    assert len(pointer.presses) == 2


@pytest.mark.parametrize("error", [
    TransportFailure("Classifier request timed out after 60s"),
    ClassifierError("HTTP 503: overloaded"),
])
def test_classifier_failures_are_retried(build, error):
    gateway = FakeGateway(error, 2)
    orchestrator, pointer = build([SHOWN, SHOWN, HIDDEN], gateway)

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.SOLVED
    assert outcome.attempts == 2
    assert len(gateway.calls) == 2
    assert len(pointer.presses) == 1


def test_half_written_challenge_file_aborts(build, tmp_path):
    path = tmp_path / "challenge.json"
    path.write_bytes('{"visible": true, "instruction": "请点击'.encode("utf-8")[:-1])
    orchestrator, _ = build([SHOWN], FakeGateway(1))
    orchestrator.probe = ChallengeFileProbe(str(path))

    outcome = asyncio.run(orchestrator.run_once())

    assert outcome.status is SolveStatus.ABORTED
    assert "Unreadable challenge state" in outcome.reason


def test_default_pointer_uses_configured_jitter(solver_config):
    solver_config.press_settle_range = (0.01, 0.02)
    solver_config.press_hold_range = (0.03, 0.04)

    orchestrator = SolveOrchestrator(
        gateway=FakeGateway(1),
        probe=StaticChallengeProbe([HIDDEN]),
        cfg=solver_config,
    )

    assert orchestrator.pointer.settle_range == (0.01, 0.02)
    assert orchestrator.pointer.hold_range == (0.03, 0.04)
