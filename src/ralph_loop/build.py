from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol, Sequence

from .models import BuildResult

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 300
_MAX_ERROR_LINES = 40


class BuildCollaborator(Protocol):
    """Anything that can attempt to compile a project and report diagnostics."""

    def build(self, project_root: Path) -> BuildResult:
        ...


class CommandBuilder:
    """Build collaborator that runs a fixed command line in the project root."""

    def __init__(self, command: Sequence[str], *, timeout: int = _DEFAULT_TIMEOUT_SECONDS) -> None:
        if not command:
            raise ValueError("build command must be non-empty")
        self.command = list(command)
        self.timeout = timeout

    def build(self, project_root: Path) -> BuildResult:
        logger.debug("Running build command %s in %s", self.command, project_root)
        try:
            completed = subprocess.run(
                self.command,
                cwd=project_root,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            return BuildResult(success=False, errors=[f"Build command not found: {self.command[0]}"])
        except subprocess.TimeoutExpired:
            return BuildResult(success=False, errors=[f"Build timed out after {self.timeout}s"])

        if completed.returncode == 0:
            return BuildResult(success=True)

        output = completed.stderr.strip() or completed.stdout.strip()
        lines = [line for line in output.splitlines() if line.strip()][:_MAX_ERROR_LINES]
        if not lines:
            lines = [f"Build exited with code {completed.returncode}"]
        return BuildResult(success=False, errors=lines)
