from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph

from .build import BuildCollaborator
from .checkpoint import SourceControl, checkpoint
from .context import build_context
from .gates import QUALITY_GATES, Gate, ProjectContext, generate_feedback, has_started_work, run_all
from .models import GatesRunResult, IterationOutcome, LoopConfig, LoopRunResult, LoopStatus
from .state_store import LoopStateStore, NotInitializedError, utc_timestamp

logger = logging.getLogger(__name__)

AgentCall = Callable[[str], str]

ALREADY_COMPLETE_MESSAGE = 'ralph: task is already complete. Run "ralph init --force" to start a new task.'
ALREADY_RUNNING_MESSAGE = "ralph: task is already running."
WAITING_MESSAGE = 'ralph: task is waiting for input. Update .ralph/feedback.md and run "ralph resume".'
PAUSED_LINE = "Paused - waiting for input"


class LoopGraphState(TypedDict, total=False):
    budget: int
    iterations: int
    status: str
    lines: list[str]
    error: str | None
    done: bool
    exhausted: bool


class IterationController:
    """Drives the agent through fresh-context iterations until a terminal status.

    The controller keeps no loop state of its own: every step re-reads
    ``.ralph/`` so edits made by the agent or a human between (or during)
    iterations are always authoritative.  Completion claims are only
    accepted after the quality gates pass.
    """

    def __init__(
        self,
        store: LoopStateStore,
        agent: AgentCall,
        *,
        gates: Sequence[Gate] = QUALITY_GATES,
        builder: BuildCollaborator | None = None,
        source_control: SourceControl | None = None,
        config: LoopConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.agent = agent
        self.gates = tuple(gates)
        self.builder = builder
        self.source_control = source_control
        self.config = config if config is not None else store.read_config()
        self.sleep = sleep
        self.consecutive_gate_failures = 0
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(LoopGraphState)
        graph.add_node("start", self._start_node)
        graph.add_node("iterate", self._iterate_node)
        graph.add_node("pause", self._pause_node)
        graph.add_node("finalize", self._finalize_node)

        graph.add_edge(START, "start")
        graph.add_conditional_edges(
            "start",
            self._start_route,
            {
                "iterate": "iterate",
                "finalize": "finalize",
            },
        )
        graph.add_conditional_edges(
            "iterate",
            self._iterate_route,
            {
                "pause": "pause",
                "finalize": "finalize",
            },
        )
        graph.add_edge("pause", "iterate")
        graph.add_edge("finalize", END)
        return graph

    def _require_initialized(self) -> None:
        if not self.store.exists():
            raise NotInitializedError(f'{self.store.root} not found. Run "ralph init" first.')

    # ------------------------------------------------------------------
    # Single iteration
    # ------------------------------------------------------------------

    def step(self) -> IterationOutcome:
        """Run exactly one iteration against the persisted state.

        The counter is advanced and persisted before any work, so a crash
        mid-iteration still shows forward progress.  Agent-call failures are
        recorded as ``error`` and reported in the outcome, never raised.

        Raises:
            NotInitializedError: If the project has no ``.ralph/`` directory.
        """
        self._require_initialized()
        iteration = self.store.read().iteration + 1
        self.store.write_iteration(iteration)

        state = self.store.read()
        if state.status is LoopStatus.COMPLETE:
            return IterationOutcome(
                iteration=iteration,
                status=state.status,
                message=f"Iteration {iteration}: Task marked complete",
            )
        if state.status is LoopStatus.WAITING:
            return IterationOutcome(
                iteration=iteration,
                status=state.status,
                message=f"Iteration {iteration}: {PAUSED_LINE}",
            )

        prompt = build_context(
            state,
            iteration,
            gate_failures=self.consecutive_gate_failures,
            max_gate_failures=self.config.max_gate_failures,
        )
        logger.info("Iteration %d: calling agent (%d prompt chars)", iteration, len(prompt))
        try:
            response = self.agent(prompt)
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            logger.error("Iteration %d: agent call failed: %s", iteration, error)
            self.store.write_status(LoopStatus.ERROR)
            self.store.append_progress(
                f"\n### Iteration {iteration} failed ({utc_timestamp()})\n\nAgent call failed: {error}\n"
            )
            return IterationOutcome(
                iteration=iteration,
                status=LoopStatus.ERROR,
                agent_called=True,
                message=f"Iteration {iteration}: Error - {error}",
                error=error,
            )

        self.store.append_iteration_entry(
            iteration,
            response if isinstance(response, str) else str(response),
            max_chars=self.config.progress_summary_chars,
        )

        checkpointed: bool | None = None
        interval = self.config.checkpoint_interval
        if self.source_control is not None and interval > 0 and iteration % interval == 0:
            checkpointed = checkpoint(self.source_control, iteration)

        lines = [f"Iteration {iteration}: Completed"]
        gates: GatesRunResult | None = None
        status = self.store.read_status()
        if status is LoopStatus.COMPLETE:
            gates, status, verdict = self._validate_completion()
            lines.append(verdict)
        elif status is LoopStatus.WAITING:
            lines.append(PAUSED_LINE)
        elif status is not LoopStatus.RUNNING:
            # idle and error belong to the harness
            logger.warning("Iteration %d: agent wrote status %s; resetting to running", iteration, status.value)
            self.store.write_status(LoopStatus.RUNNING)
            status = LoopStatus.RUNNING

        return IterationOutcome(
            iteration=iteration,
            status=status,
            agent_called=True,
            message="\n".join(lines),
            gates=gates,
            checkpointed=checkpointed,
        )

    def _validate_completion(self) -> tuple[GatesRunResult, LoopStatus, str]:
        """Route a completion claim through the gates and settle the resulting status."""
        project = ProjectContext(self.store.project_root, builder=self.builder)
        result = run_all(self.gates, project)
        if result.passed:
            self.consecutive_gate_failures = 0
            self.store.write_feedback("")
            logger.info("Completion accepted: all %d quality gates passed", len(result.results))
            return result, LoopStatus.COMPLETE, "Task marked complete! All quality gates passed."

        failed = ", ".join(result.failed_gates)
        self.store.write_feedback(generate_feedback(result.results, self.gates))
        if not has_started_work(project):
            logger.info("Quality gates failed before any work on src/App.tsx; not counting the failure")
            self.store.write_status(LoopStatus.RUNNING)
            return result, LoopStatus.RUNNING, f"Quality gates failed (pre-work, not counted): {failed}"

        self.consecutive_gate_failures += 1

        limit = self.config.max_gate_failures
        if limit > 0 and self.consecutive_gate_failures >= limit:
            logger.warning(
                "Quality gates failed %d consecutive time(s); pausing for human input",
                self.consecutive_gate_failures,
            )
            self.store.write_status(LoopStatus.WAITING)
            return (
                result,
                LoopStatus.WAITING,
                f"Quality gates failed {self.consecutive_gate_failures} time(s) in a row ({failed}). {PAUSED_LINE}",
            )

        self.store.write_status(LoopStatus.RUNNING)
        return result, LoopStatus.RUNNING, f"Quality gates failed: {failed}"

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    def _start_node(self, state: LoopGraphState) -> dict[str, Any]:
        current = self.store.read()
        if current.status is LoopStatus.COMPLETE:
            return {"status": current.status.value, "lines": [ALREADY_COMPLETE_MESSAGE], "done": True}
        if current.status is LoopStatus.WAITING:
            return {"status": current.status.value, "lines": [WAITING_MESSAGE], "done": True}

        self.consecutive_gate_failures = 0
        self.store.write_status(LoopStatus.RUNNING)
        logger.info("Starting loop at iteration %d (budget %d)", current.iteration + 1, state["budget"])
        return {
            "status": LoopStatus.RUNNING.value,
            "lines": [f"Starting ralph loop at iteration {current.iteration + 1}"],
            "done": False,
        }

    def _start_route(self, state: LoopGraphState) -> str:
        if state.get("done"):
            return "finalize"
        return "iterate"

    def _iterate_node(self, state: LoopGraphState) -> dict[str, Any]:
        outcome = self.step()
        iterations = state.get("iterations", 0) + 1
        done = outcome.status.stops_loop or outcome.status is LoopStatus.ERROR
        return {
            "iterations": iterations,
            "status": outcome.status.value,
            "lines": [*state.get("lines", []), *outcome.message.splitlines()],
            "error": outcome.error,
            "done": done,
            "exhausted": not done and iterations >= state["budget"],
        }

    def _iterate_route(self, state: LoopGraphState) -> str:
        if state.get("done") or state.get("exhausted"):
            return "finalize"
        return "pause"

    def _pause_node(self, _state: LoopGraphState) -> dict[str, Any]:
        delay = self.config.iteration_delay_seconds
        if delay > 0:
            self.sleep(delay)
        return {"done": False}

    def _finalize_node(self, state: LoopGraphState) -> dict[str, Any]:
        lines = list(state.get("lines", []))
        status = LoopStatus(state.get("status", LoopStatus.IDLE.value))
        if state.get("exhausted"):
            lines.append(f"Reached max iterations ({state['budget']})")
            self.store.write_status(LoopStatus.IDLE)
            status = LoopStatus.IDLE

        iterations = state.get("iterations", 0)
        lines += ["", f"Completed {iterations} iteration(s)", f"Final status: {status.value}"]
        logger.info("Loop stopped after %d iteration(s) with status %s", iterations, status.value)
        return {"lines": lines, "status": status.value}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, max_iterations: int | None = None) -> LoopRunResult:
        """Iterate until the status is terminal or the budget is spent.

        Args:
            max_iterations: Iteration budget for this invocation; defaults to
                the project's configured ``max_iterations``.

        Returns:
            The run report: iterations performed, final status, report lines
            and the agent-call error (if one stopped the loop).

        Raises:
            NotInitializedError: If the project has no ``.ralph/`` directory.
            ValueError: If ``max_iterations`` is below 1.
        """
        self._require_initialized()
        budget = self.config.max_iterations if max_iterations is None else max_iterations
        if budget < 1:
            raise ValueError(f"max_iterations must be >= 1, got: {budget}")

        initial_state: LoopGraphState = {
            "budget": budget,
            "iterations": 0,
            "status": LoopStatus.IDLE.value,
            "lines": [],
            "error": None,
            "done": False,
            "exhausted": False,
        }
        result = self.graph.invoke(initial_state, config={"recursion_limit": 2 * budget + 10})
        return LoopRunResult(
            iterations=result.get("iterations", 0),
            status=LoopStatus(result["status"]),
            lines=list(result.get("lines", [])),
            error=result.get("error"),
        )

    def resume(self, max_iterations: int | None = None) -> LoopRunResult:
        """Set a paused, idle or failed loop back to running and continue it."""
        self._require_initialized()
        current = self.store.read()
        if current.status is LoopStatus.COMPLETE:
            return LoopRunResult(iterations=0, status=current.status, lines=[ALREADY_COMPLETE_MESSAGE])
        if current.status is LoopStatus.RUNNING:
            return LoopRunResult(iterations=0, status=current.status, lines=[ALREADY_RUNNING_MESSAGE])

        self.store.write_status(LoopStatus.RUNNING)
        self.store.append_progress(
            f"\n### Resumed at iteration {current.iteration}\n\nStatus was: {current.status.value}\n"
        )
        logger.info("Resumed loop at iteration %d (was %s)", current.iteration, current.status.value)
        return self.run(max_iterations)

    def start(self, task: str, *, max_iterations: int | None = None, force: bool = False) -> LoopRunResult:
        """Initialize fresh state for *task* and run the loop immediately."""
        self.store.init(task, force=force, status=LoopStatus.RUNNING, config=self.config)
        return self.run(max_iterations)
