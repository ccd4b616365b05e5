"""
Tests for command-line argument handling.
"""
import asyncio
from types import SimpleNamespace

import pytest

import run_solver
from solver.screenshot import ScreenRegion


@pytest.mark.parametrize("value, expected", [
    (None, None),
    ("200x80", ScreenRegion(left=0, top=0, width=200, height=80)),
    ("10,20,200,80", ScreenRegion(left=10, top=20, width=200, height=80)),
])
def test_parse_display(value, expected):
    assert run_solver.parse_display(value) == expected


@pytest.mark.parametrize("value", ["wide x tall", "10,20,200", "1,2,3,four"])
def test_parse_display_rejects_malformed_values(value):
    with pytest.raises(ValueError):
        run_solver.parse_display(value)


def test_solve_reports_malformed_display(capsys, monkeypatch):
    def fail_build(*args, **kwargs):
        raise AssertionError("orchestrator should not be built")

    monkeypatch.setattr(run_solver, "build_orchestrator", fail_build)
    args = SimpleNamespace(image="glyphs.png", instruction="Click the bird", display="[1,2]", annotated=None)

    assert asyncio.run(run_solver.solve(args)) == 1
    assert "INVALID --display" in capsys.readouterr().out
