from importlib.metadata import version

from .agent_runtime import DeepAgentCaller, extract_agent_text
from .build import BuildCollaborator, CommandBuilder
from .checkpoint import CHECKPOINT_AUTHOR, GitSourceControl, SourceControl, checkpoint
from .context import build_context, recent_progress_entries
from .gates import QUALITY_GATES, Gate, ProjectContext, generate_feedback, run_all
from .loop import IterationController
from .models import (
    BuildResult,
    GateOutcome,
    GateResult,
    GatesRunResult,
    IterationOutcome,
    LoopConfig,
    LoopRunResult,
    LoopState,
    LoopStatus,
)
from .settings import RuntimeSettings
from .state_store import AlreadyInitializedError, LoopStateStore, NotInitializedError
from .status import render_status


def get_version() -> str:
    try:
        return version("ralph-loop")
    except Exception:
        return "0.0.0"


__all__ = [
    "AlreadyInitializedError",
    "BuildCollaborator",
    "BuildResult",
    "CHECKPOINT_AUTHOR",
    "CommandBuilder",
    "DeepAgentCaller",
    "Gate",
    "GateOutcome",
    "GateResult",
    "GatesRunResult",
    "GitSourceControl",
    "IterationController",
    "IterationOutcome",
    "LoopConfig",
    "LoopRunResult",
    "LoopState",
    "LoopStateStore",
    "LoopStatus",
    "NotInitializedError",
    "ProjectContext",
    "QUALITY_GATES",
    "RuntimeSettings",
    "SourceControl",
    "build_context",
    "checkpoint",
    "extract_agent_text",
    "generate_feedback",
    "recent_progress_entries",
    "render_status",
    "run_all",
]
