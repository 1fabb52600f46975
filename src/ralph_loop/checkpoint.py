from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

CHECKPOINT_AUTHOR = "Ralph <ralph@wiggum.local>"


class SourceControl(Protocol):
    def is_repo(self) -> bool:
        ...

    def add_all(self) -> None:
        ...

    def commit(self, message: str, author: str) -> None:
        ...


class GitSourceControl:
    """Source-control collaborator backed by the ``git`` executable."""

    def __init__(self, root: Path, *, timeout: int = 60) -> None:
        self.root = Path(root)
        self.timeout = timeout

    def _git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.root,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=True,
        )

    def is_repo(self) -> bool:
        try:
            result = self._git("rev-parse", "--is-inside-work-tree")
        except (OSError, subprocess.SubprocessError):
            return False
        return result.stdout.strip() == "true"

    def add_all(self) -> None:
        self._git("add", "--all")

    def commit(self, message: str, author: str) -> None:
        self._git("commit", "--allow-empty", "-m", message, f"--author={author}")


def checkpoint(vcs: SourceControl, iteration: int) -> bool:
    """Commit the working tree for *iteration*.

    Returns True when a commit was made. Failures are logged and reported
    as False; they never propagate into the loop.
    """
    try:
        if not vcs.is_repo():
            logger.debug("Skipping checkpoint for iteration %d: not a repository", iteration)
            return False
        vcs.add_all()
        vcs.commit(f"ralph: iteration {iteration}", CHECKPOINT_AUTHOR)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Checkpoint commit failed for iteration %d: %s", iteration, exc)
        return False
    logger.info("Checkpoint committed for iteration %d", iteration)
    return True
