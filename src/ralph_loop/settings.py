from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from .models import LoopConfig


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    max_iterations: int = 50
    checkpoint_interval: int = 1
    iteration_delay_seconds: float = 1.0
    max_gate_failures: int = 5
    progress_summary_chars: int = 500
    model_name: str = "gpt-4o"
    temperature: float = 0.0
    build_command: str = ""
    project_root: str = ""

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            max_iterations=_get_env_int("RALPH_MAX_ITERATIONS", default=50, minimum=1, maximum=10_000),
            checkpoint_interval=_get_env_int("RALPH_CHECKPOINT_INTERVAL", default=1, minimum=0),
            iteration_delay_seconds=_get_env_float("RALPH_ITERATION_DELAY_SECONDS", default=1.0, minimum=0.0),
            max_gate_failures=_get_env_int("RALPH_MAX_GATE_FAILURES", default=5, minimum=0),
            progress_summary_chars=_get_env_int("RALPH_PROGRESS_SUMMARY_CHARS", default=500, minimum=20),
            model_name=os.getenv("RALPH_MODEL", "gpt-4o"),
            temperature=_get_env_float("RALPH_TEMPERATURE", default=0.0, minimum=0.0, maximum=2.0),
            build_command=os.getenv("RALPH_BUILD_COMMAND", ""),
            project_root=os.getenv("RALPH_PROJECT_ROOT", ""),
        ).normalized()

    @property
    def project_root_path(self) -> Path:
        """Return the project root as a Path, defaulting to cwd if unset."""
        return Path(self.project_root) if self.project_root else Path.cwd()

    @property
    def build_argv(self) -> list[str]:
        return shlex.split(self.build_command)

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        model_name = self.model_name.strip()
        if not model_name:
            raise ValueError("RALPH_MODEL must be non-empty")
        try:
            shlex.split(self.build_command)
        except ValueError as exc:
            raise ValueError(f"RALPH_BUILD_COMMAND is not a valid command line: {exc}") from exc
        return RuntimeSettings(
            max_iterations=self.max_iterations,
            checkpoint_interval=self.checkpoint_interval,
            iteration_delay_seconds=self.iteration_delay_seconds,
            max_gate_failures=self.max_gate_failures,
            progress_summary_chars=self.progress_summary_chars,
            model_name=model_name,
            temperature=self.temperature,
            build_command=self.build_command.strip(),
            project_root=self.project_root.strip(),
        )

    def loop_defaults(self) -> LoopConfig:
        """Loop options used when a project has no readable ``config.json``."""
        return LoopConfig(
            max_iterations=self.max_iterations,
            checkpoint_interval=self.checkpoint_interval,
            iteration_delay_seconds=self.iteration_delay_seconds,
            max_gate_failures=self.max_gate_failures,
            progress_summary_chars=self.progress_summary_chars,
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float, minimum: float, maximum: float = 3_600.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
