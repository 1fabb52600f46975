from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from .models import LoopConfig, LoopState, LoopStatus

logger = logging.getLogger(__name__)

RALPH_DIR = ".ralph"
PROGRESS_HEADER = "# Progress\n\n"

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AlreadyInitializedError(FileExistsError):
    """Raised by ``init`` when loop state already exists and force was not given."""


class NotInitializedError(FileNotFoundError):
    """Raised when an operation needs a ``.ralph/`` directory that does not exist."""


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place.  This prevents partial/corrupt reads
    if the process crashes mid-write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_text(path: Path, fallback: str) -> str:
    """Read and strip a state file, returning *fallback* if it is missing or unreadable."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return fallback


def _parse_iteration(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        return 0
    return value if value >= 0 else 0


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


# ---------------------------------------------------------------------------
# LoopStateStore
# ---------------------------------------------------------------------------


class LoopStateStore:
    """File-backed store for the loop state under ``<project>/.ralph/``.

    Each field lives in its own file and every write replaces exactly one
    file atomically, so a failed write can never corrupt a neighbouring
    field.  Reads are total: any missing or unreadable file resolves to
    its default value.
    """

    def __init__(self, project_root: Path) -> None:
        self.project_root = Path(project_root)
        self.root = self.project_root / RALPH_DIR

    # ------------------------------------------------------------------
    # Path properties
    # ------------------------------------------------------------------

    @property
    def task_path(self) -> Path:
        return self.root / "task.md"

    @property
    def progress_path(self) -> Path:
        return self.root / "progress.md"

    @property
    def feedback_path(self) -> Path:
        return self.root / "feedback.md"

    @property
    def iteration_path(self) -> Path:
        return self.root / "iteration.txt"

    @property
    def status_path(self) -> Path:
        return self.root / "status.txt"

    @property
    def config_path(self) -> Path:
        return self.root / "config.json"

    def artifact_path(self, name: str) -> Path:
        """Path to an auxiliary file inside ``.ralph/`` (build report, summary, ...)."""
        if not name or "/" in name or "\\" in name or name in {".", ".."}:
            raise ValueError(f"artifact name must be a plain file name, got: {name!r}")
        return self.root / name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.root.is_dir()

    def init(
        self,
        task: str,
        *,
        force: bool = False,
        status: LoopStatus = LoopStatus.IDLE,
        config: LoopConfig | None = None,
    ) -> None:
        """Create fresh loop state for *task*.

        Args:
            task: The task description, stored verbatim.
            force: Discard any existing state instead of failing.
            status: Initial status (``RUNNING`` when the caller starts a loop right away).
            config: Loop options to persist; defaults to ``LoopConfig()``.

        Raises:
            AlreadyInitializedError: If state exists and *force* is false.
        """
        if self.exists():
            if not force:
                raise AlreadyInitializedError(
                    f"{self.root} already exists. Use force to reinitialize."
                )
            logger.info("Discarding existing loop state at %s", self.root)
            self.clear()

        self.root.mkdir(parents=True, exist_ok=True)
        _atomic_write_text(self.task_path, f"{task.strip()}\n")
        _atomic_write_text(self.progress_path, PROGRESS_HEADER)
        _atomic_write_text(self.feedback_path, "")
        _atomic_write_text(self.iteration_path, "0")
        _atomic_write_text(self.status_path, status.value)
        self.write_config(config if config is not None else LoopConfig())
        logger.info("Initialized loop state at %s (status=%s)", self.root, status.value)

    def clear(self) -> None:
        """Delete all loop state. Only called on an explicit discard."""
        if self.root.is_dir():
            shutil.rmtree(self.root)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> LoopState:
        """Read fresh state from the ``.ralph/`` files. Never raises."""
        return LoopState(
            task=_read_text(self.task_path, ""),
            progress=_read_text(self.progress_path, ""),
            feedback=_read_text(self.feedback_path, ""),
            iteration=_parse_iteration(_read_text(self.iteration_path, "0")),
            status=self.read_status(),
        )

    def read_status(self) -> LoopStatus:
        return LoopStatus.parse(_read_text(self.status_path, LoopStatus.IDLE.value))

    def read_config(self, defaults: LoopConfig | None = None) -> LoopConfig:
        """Read ``config.json`` merged over *defaults*; invalid or missing files yield the defaults."""
        base = defaults if defaults is not None else LoopConfig()
        text = _read_text(self.config_path, "")
        if not text:
            return base
        try:
            payload = json.loads(text)
            if not isinstance(payload, dict):
                raise ValueError("config.json must contain a JSON object")
            return LoopConfig.model_validate({**base.model_dump(), **payload})
        except (ValueError, ValidationError) as exc:
            logger.warning("Ignoring invalid loop config at %s: %s", self.config_path, exc)
            return base

    def read_artifact(self, name: str) -> str | None:
        path = self.artifact_path(name)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    # ------------------------------------------------------------------
    # Writes (one file each)
    # ------------------------------------------------------------------

    def write_iteration(self, iteration: int) -> None:
        if iteration < 0:
            raise ValueError(f"iteration must be >= 0, got: {iteration}")
        _atomic_write_text(self.iteration_path, str(iteration))

    def write_status(self, status: LoopStatus) -> None:
        _atomic_write_text(self.status_path, LoopStatus(status).value)

    def write_feedback(self, text: str) -> None:
        _atomic_write_text(self.feedback_path, text)

    def append_progress(self, entry: str) -> None:
        """Append *entry* to the progress log (read-then-replace, never in place)."""
        try:
            current = self.progress_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            current = PROGRESS_HEADER
        _atomic_write_text(self.progress_path, current + entry)

    def append_iteration_entry(self, iteration: int, summary: str, *, max_chars: int = 500) -> None:
        """Append the ``### Iteration N`` section for one finished iteration.

        The summary is truncated to *max_chars* characters, with ``...``
        marking the cut.
        """
        text = summary.strip()
        if len(text) > max_chars:
            text = f"{text[:max_chars]}..."
        self.append_progress(f"\n### Iteration {iteration} ({utc_timestamp()})\n\n{text}\n")

    def write_config(self, config: LoopConfig) -> None:
        _atomic_write_text(self.config_path, config.model_dump_json(indent=2))

    def write_artifact(self, name: str, text: str) -> Path:
        path = self.artifact_path(name)
        _atomic_write_text(path, text)
        return path

    def remove_artifact(self, name: str) -> None:
        self.artifact_path(name).unlink(missing_ok=True)
