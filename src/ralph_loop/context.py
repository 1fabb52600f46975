"""Fresh-context prompt construction.

Every iteration's prompt is rendered from the persisted ``LoopState`` alone,
never from earlier prompts or conversation history, so prompt size stays
bounded no matter how many iterations have run.
"""

from __future__ import annotations

import re

from .models import LoopState

RECENT_PROGRESS_ENTRIES = 3

_LOOP_ENTRY_RE = re.compile(r"^###\s+(?:Iteration|Resumed)\b", re.MULTILINE)
_LOOP_ENTRY_SPLIT_RE = re.compile(r"(?=^###\s+(?:Iteration|Resumed)\b)", re.MULTILINE)
_HEADING_SPLIT_RE = re.compile(r"(?=^###\s)", re.MULTILINE)
_FEEDBACK_TEMPLATE_HEADINGS = ("# Feedback", "## Instructions")
_FEEDBACK_PLACEHOLDER_PREFIX = "Add feedback"

INSTRUCTIONS = (
    "Your job:",
    "1. Review the task and progress above",
    "2. Take ONE concrete step toward completing the task",
    "3. Use your tools to read files, make changes and run checks",
    "4. Verify your changes work before reporting progress",
    "5. Append what you did to .ralph/progress.md",
    '6. If the task is complete, write "complete" to .ralph/status.txt',
    '7. If you need human input, write "waiting" to .ralph/status.txt',
)


def recent_progress_entries(progress: str, limit: int = RECENT_PROGRESS_ENTRIES) -> list[str]:
    """Return the last *limit* entries of a progress log.

    Entries start at the loop's own ``### Iteration`` / ``### Resumed``
    headings, so ``###`` headings inside an agent's summary stay part of
    their entry.  A log without loop headings falls back to splitting on any
    ``### `` heading; a log with no heading at all has no entries.
    """
    if _LOOP_ENTRY_RE.search(progress):
        splitter = _LOOP_ENTRY_SPLIT_RE
    elif re.search(r"^###\s", progress, flags=re.MULTILINE):
        splitter = _HEADING_SPLIT_RE
    else:
        return []
    entries = [
        chunk.strip()
        for chunk in splitter.split(progress)
        if chunk.strip().startswith("###")
    ]
    return entries[-limit:] if limit > 0 else []


def actionable_feedback(feedback: str) -> str:
    """Strip template scaffolding from feedback; empty when nothing actionable remains."""
    lines = [
        line
        for line in feedback.splitlines()
        if line.strip() and not line.startswith(_FEEDBACK_TEMPLATE_HEADINGS)
    ]
    content = "\n".join(lines).strip()
    if content.startswith(_FEEDBACK_PLACEHOLDER_PREFIX):
        return ""
    return content


def escalation_text(gate_failures: int, max_gate_failures: int = 0) -> str:
    """Urgency block for a prompt after *gate_failures* rejected completion claims."""
    if gate_failures <= 0:
        return ""
    if gate_failures == 1:
        return "\n".join(
            [
                "## ACTION REQUIRED",
                "Quality gates failed. You MUST use your tools to fix the issues.",
                "Read: cat .ralph/feedback.md",
            ]
        )
    attempt = f"ATTEMPT {gate_failures + 1}"
    if max_gate_failures > 0:
        attempt += f" OF {max_gate_failures}"
    return "\n".join(
        [
            f"## CRITICAL - {attempt}",
            f"Gates have failed {gate_failures} time(s). REQUIRED FIRST ACTION: cat .ralph/feedback.md",
            "If you respond with text and no tool calls, the loop will pause for a human.",
        ]
    )


def build_context(state: LoopState, iteration: int, *, gate_failures: int = 0, max_gate_failures: int = 0) -> str:
    """Render the prompt for *iteration* from persisted state.

    *gate_failures* counts consecutive rejected completion claims; when
    positive an escalation block follows the feedback section.
    """
    sections: list[str] = [f"# Ralph Iteration {iteration}", ""]

    sections += ["## Task", ""]
    sections.append(state.task or "No task defined. Please check .ralph/task.md")
    sections.append("")

    sections += ["## Progress So Far", ""]
    entries = recent_progress_entries(state.progress)
    if entries:
        sections.append("\n\n".join(entries))
    else:
        sections.append("No progress recorded yet. This is the first iteration.")
    sections.append("")

    feedback = actionable_feedback(state.feedback)
    if feedback:
        sections += ["## Feedback / Corrections", "", feedback, ""]

    escalation = escalation_text(gate_failures, max_gate_failures)
    if escalation:
        sections += [escalation, ""]

    sections += ["## Instructions", ""]
    sections.append(f"You are in iteration {iteration} of an autonomous development loop.")
    sections.append("")
    sections.extend(INSTRUCTIONS)
    sections.append("")
    sections += [
        "Important:",
        "- Focus on ONE clear step per iteration",
        "- Always verify changes work before marking progress",
        "- Completion is checked by quality gates; failures come back as feedback",
        "",
    ]
    return "\n".join(sections)
