"""
Configuration management for the captcha solver.
Put your classifier endpoint and API key in a .env file, set them as
environment variables, or save them with `run_solver.py configure`.
"""

import json
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

# Load .env file if it exists
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class PersistedSettings(BaseModel):
    """Settings written by the configure command (endpoint, credential, model)."""
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None


@dataclass
class SolverConfig:
    """Configuration for the captcha solver."""

    # Classifier endpoint (any OpenAI-compatible chat completions gateway)
    api_url: str = field(default_factory=lambda: os.getenv("SOLVER_API_URL", ""))
    api_key: str = field(
        default_factory=lambda: os.getenv("SOLVER_API_KEY") or os.getenv("OPENAI_API_KEY", "")
    )
    model: str = field(
        default_factory=lambda: os.getenv("SOLVER_MODEL", "google-ai-studio/gemini-2.5-flash")
    )
    api_timeout: float = field(default_factory=lambda: float(os.getenv("SOLVER_API_TIMEOUT", "60")))
    probe_timeout: float = 10.0
    temperature: float = 0.1
    max_tokens: int = 23768  # reasoning models spend most of this before answering
    image_detail: str = "auto"

    # Image processing
    binary_threshold: int = field(
        default_factory=lambda: int(os.getenv("SOLVER_BINARY_THRESHOLD", "210"))
    )
    min_contour_area: int = field(
        default_factory=lambda: int(os.getenv("SOLVER_MIN_CONTOUR_AREA", "50"))
    )

    # Orchestrator timing (seconds)
    cooldown: float = 3.0
    retry_delay: float = 3.0
    settle_delay: float = 1.5  # wait before checking whether the challenge closed
    detect_delay: float = 0.5  # let the challenge widget finish loading
    check_interval: float = 2.0
    max_retries: int = field(default_factory=lambda: int(os.getenv("SOLVER_MAX_RETRIES", "3")))

    # Pointer gesture jitter (seconds)
    press_settle_range: Tuple[float, float] = (0.2, 0.5)
    press_hold_range: Tuple[float, float] = (0.05, 0.1)

    # Host bridge + persisted settings
    challenge_file: str = field(
        default_factory=lambda: os.getenv("SOLVER_CHALLENGE_FILE", "challenge.json")
    )
    settings_path: str = field(
        default_factory=lambda: os.getenv("SOLVER_SETTINGS_PATH", "settings.json")
    )

    debug: bool = field(default_factory=lambda: _env_bool("SOLVER_DEBUG", True))

    def validate(self) -> bool:
        """Validate the configuration."""
        if not self.api_url:
            raise ValueError(
                "Classifier endpoint not configured!\n"
                "Please set it in one of these ways:\n"
                "1. run_solver.py configure --api-url https://gateway.example/v1\n"
                "2. Add SOLVER_API_URL=... to the .env file in the project root"
            )
        if not self.api_key:
            raise ValueError(
                "Classifier API key not found!\n"
                "Please set it in one of these ways:\n"
                "1. run_solver.py configure --api-key your-key-here\n"
                "2. Add SOLVER_API_KEY=your-key-here to the .env file in the project root"
            )
        if not 0 <= self.binary_threshold <= 255:
            raise ValueError(f"binary_threshold must be within 0-255, got {self.binary_threshold}")
        return True

    def load_settings(self, path: Optional[str] = None) -> bool:
        """Apply persisted settings on top of the environment defaults.

        Returns True when a settings file was found and applied.
        """
        settings_file = Path(path or self.settings_path)
        if not settings_file.exists():
            return False
        try:
            saved = PersistedSettings.model_validate_json(settings_file.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise ValueError(f"Invalid settings file {settings_file}: {exc}") from exc
        if saved.api_url:
            self.api_url = saved.api_url
        if saved.api_key:
            self.api_key = saved.api_key
        if saved.model:
            self.model = saved.model
        return True

    def save_settings(self, path: Optional[str] = None) -> Path:
        """Persist endpoint, credential and model so the next start picks them up."""
        settings_file = Path(path or self.settings_path)
        payload = PersistedSettings(api_url=self.api_url, api_key=self.api_key, model=self.model)
        settings_file.write_text(
            json.dumps(payload.model_dump(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        return settings_file


# Global config instance
config = SolverConfig()
