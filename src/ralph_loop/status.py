from __future__ import annotations

from .models import LoopState, LoopStatus

_INDICATORS = {
    LoopStatus.RUNNING: "[*]",
    LoopStatus.COMPLETE: "[+]",
    LoopStatus.WAITING: "[?]",
    LoopStatus.ERROR: "[!]",
    LoopStatus.IDLE: "[ ]",
}
_TITLE_MAX_CHARS = 60


def status_indicator(status: LoopStatus) -> str:
    return _INDICATORS.get(status, "[ ]")


def task_title(task: str) -> str:
    """First non-heading line of the task, capped for one-line display."""
    for raw in task.splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            if len(line) > _TITLE_MAX_CHARS:
                return f"{line[: _TITLE_MAX_CHARS - 3]}..."
            return line
    return "No task defined"


def progress_summary(progress: str, max_lines: int = 5) -> str:
    """Body lines of the most recent progress entries, newest last."""
    lines = [line for line in progress.splitlines() if line.strip() and not line.startswith("#")]
    if not lines:
        return "No progress yet."
    return "\n".join(lines[-max_lines:])


def feedback_lines(feedback: str) -> list[str]:
    return [
        line
        for line in feedback.splitlines()
        if line.strip() and not line.startswith("#") and not line.startswith("-")
    ]


def render_status(state: LoopState, *, verbose: bool = False) -> str:
    output = [
        f"{status_indicator(state.status)} Ralph Status",
        "",
        f"Status:     {state.status.value}",
        f"Iteration:  {state.iteration}",
        f"Task:       {task_title(state.task)}",
    ]

    feedback = feedback_lines(state.feedback)
    if feedback:
        output.append(f"Feedback:   Yes ({len(feedback)} lines)")

    if verbose:
        output += ["", "Progress:", progress_summary(state.progress)]
        if feedback:
            output += ["", "Recent feedback:", *feedback[:3]]

    return "\n".join(output)
