#!/usr/bin/env python3
"""
Glyph Click Captcha Solver - Main Entry Point

Finds the glyphs in a click-the-character captcha, asks a multimodal model
which one the instruction means, and clicks it.

Usage:
    python run_solver.py watch
    python run_solver.py solve captcha.png -i "Click the character 'tree'"
    python run_solver.py test-api
    python run_solver.py configure --api-url https://gateway.example/v1 --api-key sk-...
"""

import sys
import asyncio
import argparse
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from solver.config import config
from solver.challenge import ChallengeFileProbe
from solver.classifier import ClassifierGateway
from solver.errors import SolverError
from solver.image_source import ImageSource
from solver.orchestrator import SolveOrchestrator, SolveOutcome, SolveStatus
from solver.overlay import draw_crosshair
from solver.screenshot import ScreenRegion
from solver.utils import format_duration


console = Console()

OUTCOME_STYLES = {
    SolveStatus.SOLVED: ("CAPTCHA SOLVED", "green"),
    SolveStatus.GAVE_UP: ("GAVE UP", "red"),
    SolveStatus.ABORTED: ("ATTEMPT ABORTED", "yellow"),
    SolveStatus.NO_CHALLENGE: ("NO CHALLENGE", "dim"),
    SolveStatus.SKIPPED: ("SKIPPED", "dim"),
}


def print_banner():
    """Print the startup banner."""
    banner = """
+===========================================================+
|                                                           |
|      GLYPH CLICK CAPTCHA SOLVER                           |
|                                                           |
|      Segment, ask the classifier, click the glyph         |
|                                                           |
+===========================================================+
"""
    console.print(banner, style="bold cyan")


def print_status():
    """Print current configuration."""
    table = Table(title="Solver Status", show_header=False, border_style="dim")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("API URL", config.api_url or "Missing")
    table.add_row("API Key", "Configured" if config.api_key else "Missing")
    table.add_row("Model", config.model)
    table.add_row("Timeout", f"{config.api_timeout:.0f}s")
    table.add_row("Binary Threshold", str(config.binary_threshold))
    table.add_row("Min Contour Area", str(config.min_contour_area))
    table.add_row("Max Retries", str(config.max_retries))
    table.add_row("Check Interval", format_duration(config.check_interval))
    table.add_row("Challenge File", config.challenge_file)
    table.add_row("Settings File", config.settings_path)

    console.print(table)
    console.print()


def print_outcome(outcome: SolveOutcome):
    title, style = OUTCOME_STYLES[outcome.status]
    lines = [f"[{style} bold]{title}[/{style} bold]", ""]
    lines.append(f"[dim]Attempts:[/dim] {outcome.attempts}")
    lines.append(f"[dim]Duration:[/dim] {format_duration(outcome.duration)}")
    if outcome.target is not None:
        x, y = outcome.target.rounded()
        lines.append(f"[dim]Target:[/dim] label {outcome.index} at ({x}, {y})")
    lines.append("")
    lines.append(outcome.reason)
    console.print(Panel("\n".join(lines), title="Result", border_style=style))


def parse_display(value: Optional[str]) -> Optional[ScreenRegion]:
    """Accept 'WxH' or 'left,top,width,height'."""
    if not value:
        return None
    if "x" in value.lower() and "," not in value:
        width, height = value.lower().split("x", 1)
        try:
            return ScreenRegion(left=0, top=0, width=int(width), height=int(height))
        except ValueError:
            raise ValueError(f"Expected 'WxH', got {value!r}") from None
    return ScreenRegion.parse(value)


def build_orchestrator(challenge_file: Optional[str] = None) -> SolveOrchestrator:
    gateway = ClassifierGateway.from_config(config)
    probe = ChallengeFileProbe(challenge_file or config.challenge_file)
    return SolveOrchestrator(gateway=gateway, probe=probe, on_outcome=print_outcome)


async def watch(args) -> int:
    orchestrator = build_orchestrator(args.challenge_file)
    console.print(f"[bold green]Watching[/bold green] {orchestrator.probe.path} "
                  f"every {format_duration(config.check_interval)} - Ctrl+C to stop")
    results = await orchestrator.watch(max_polls=args.max_polls)
    return 0 if all(r.succeeded for r in results) else 1


async def solve(args) -> int:
    try:
        display = parse_display(args.display)
    except ValueError as e:
        console.print(Panel(escape(str(e)), title="INVALID --display", border_style="red"))
        return 1

    orchestrator = build_orchestrator()
    raster = await ImageSource().fetch(args.image)
    selection = await orchestrator.locate(raster, args.instruction, display)

    table = Table(title="Glyph Boxes", border_style="dim")
    table.add_column("#", style="cyan")
    table.add_column("Box (min_x, min_y, max_x, max_y)")
    table.add_column("Area", justify="right")
    for index, box in selection.layout.labeled():
        marker = " <" if index == selection.index else ""
        table.add_row(f"{index}{marker}", str(box.bbox), str(box.area))
    console.print(table)

    x, y = selection.target.rounded()
    console.print(Panel(
        f"[green bold]Label {selection.index}[/green bold] -> click at ({x}, {y})\n"
        f"[dim]Scale:[/dim] {selection.scale.scale_x:.3f} x {selection.scale.scale_y:.3f}",
        title="Selection",
        border_style="green",
    ))

    if args.annotated:
        marked = draw_crosshair(
            selection.annotated,
            selection.target,
            scale=(selection.scale.scale_x, selection.scale.scale_y),
        )
        marked.save(args.annotated)
        console.print(f"[dim]Annotated image saved to {args.annotated}[/dim]")
    return 0


async def test_api(args) -> int:
    gateway = ClassifierGateway.from_config(config)
    return 0 if await gateway.probe() else 1


def configure(args) -> int:
    if args.api_url:
        config.api_url = args.api_url
    if args.api_key:
        config.api_key = args.api_key
    if args.model:
        config.model = args.model
    path = config.save_settings()
    console.print(f"[green]Settings saved to {path}[/green]")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Glyph click captcha solver - segment, classify and click"
    )
    parser.add_argument("--settings", default=None, help=f"Settings file (default: {config.settings_path})")
    parser.add_argument("-q", "--quiet", action="store_true", help="Hide per-step log lines")
    sub = parser.add_subparsers(dest="command")

    watch_parser = sub.add_parser("watch", help="Poll the challenge file and solve challenges as they appear")
    watch_parser.add_argument("--challenge-file", default=None,
                              help=f"Challenge state file (default: {config.challenge_file})")
    watch_parser.add_argument("--max-polls", type=int, default=None, help="Stop after this many checks")

    solve_parser = sub.add_parser("solve", help="Locate the target in one image without clicking")
    solve_parser.add_argument("image", help="Image path, URL, data: URL or screen:l,t,w,h")
    solve_parser.add_argument("-i", "--instruction", required=True, help="Challenge instruction text")
    solve_parser.add_argument("--display", default=None, help="Displayed size 'WxH' or 'left,top,width,height'")
    solve_parser.add_argument("--annotated", default=None, help="Save the labelled image here")

    sub.add_parser("test-api", help="Check that the classifier endpoint answers")

    configure_parser = sub.add_parser("configure", help="Persist endpoint, API key and model")
    configure_parser.add_argument("--api-url", default=None)
    configure_parser.add_argument("--api-key", default=None)
    configure_parser.add_argument("--model", default=None)

    sub.add_parser("status", help="Show the current configuration")

    args = parser.parse_args()

    if args.settings:
        config.settings_path = args.settings
    if args.quiet:
        config.debug = False

    try:
        config.load_settings()
    except ValueError as e:
        console.print(Panel(str(e), title="CONFIGURATION ERROR", border_style="red"))
        sys.exit(1)

    if args.command == "configure":
        sys.exit(configure(args))
    if args.command in (None, "status"):
        print_banner()
        print_status()
        sys.exit(0)

    try:
        config.validate()
    except ValueError as e:
        console.print(Panel(str(e), title="CONFIGURATION ERROR", border_style="red"))
        sys.exit(1)

    handlers = {"watch": watch, "solve": solve, "test-api": test_api}
    try:
        code = asyncio.run(handlers[args.command](args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped by user[/yellow]")
        code = 1
    except SolverError as e:
        console.print(f"[red bold]Error:[/red bold] {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
