from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import tool

from .gates import SUMMARY_ARTIFACT
from .models import LoopStatus
from .state_store import LoopStateStore

logger = logging.getLogger(__name__)

# Statuses the agent may report. ``error`` and ``idle`` belong to the harness.
AGENT_SETTABLE_STATUSES = (LoopStatus.RUNNING, LoopStatus.WAITING, LoopStatus.COMPLETE)


def build_loop_tools(store: LoopStateStore) -> list[Any]:
    """Build the LangChain tools that let an agent observe and signal loop state.

    The tools are bound to *store*, so each project gets its own set.

    Args:
        store: State store of the project the agent is working on.

    Returns:
        ``[set_loop_status, read_loop_state, write_summary]`` tool objects.
    """

    @tool("set_loop_status")
    def set_loop_status(status: str) -> str:
        """Signal the loop status after this iteration's work.

        Use "complete" when the whole task is finished (quality gates will
        verify it), "waiting" when you need human input, or "running" to
        keep iterating.

        Args:
            status: One of "running", "waiting" or "complete".

        Returns:
            Confirmation text.

        Raises:
            ValueError: If ``status`` is not an agent-settable status.
        """
        normalized = status.strip().lower()
        allowed = {item.value for item in AGENT_SETTABLE_STATUSES}
        if normalized not in allowed:
            raise ValueError(f"status must be one of {sorted(allowed)}, got: {status!r}")
        store.write_status(LoopStatus(normalized))
        logger.info("Agent set loop status to %s", normalized)
        return f"Loop status set to {normalized}"

    @tool("read_loop_state")
    def read_loop_state() -> str:
        """Return the current loop state (task, progress, feedback, iteration, status) as JSON."""
        return store.read().model_dump_json(indent=2)

    @tool("write_summary")
    def write_summary(summary: str) -> str:
        """Write .ralph/summary.md describing what was built. Required before marking complete.

        Args:
            summary: A few sentences describing the delivered work.

        Returns:
            The path of the written summary file.
        """
        path = store.write_artifact(SUMMARY_ARTIFACT, f"{summary.strip()}\n")
        return str(path)

    return [set_loop_status, read_loop_state, write_summary]
