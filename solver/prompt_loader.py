from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any


PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


@lru_cache(maxsize=None)
def load_prompt(relative_path: str) -> str:
    """Read a prompt template shipped inside the package (cached per path)."""
    path = PROMPTS_DIR / relative_path
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        raise FileNotFoundError(f"Prompt file not found: {path}") from None


def render_prompt(relative_path: str, **values: Any) -> str:
    template = load_prompt(relative_path)
    try:
        return template.format(**values)
    except KeyError as exc:
        raise KeyError(f"Prompt {relative_path} needs placeholder: {exc.args[0]}") from None
