from __future__ import annotations

from ralph_loop.context import actionable_feedback, build_context, escalation_text, recent_progress_entries
from ralph_loop.models import LoopState


def _progress(count: int) -> str:
    entries = [f"### Iteration {n} (2026-01-01T00:00:00+00:00)\n\nDid step {n}." for n in range(1, count + 1)]
    return "# Progress\n\n" + "\n\n".join(entries)


def test_recent_progress_entries_keeps_last_three() -> None:
    entries = recent_progress_entries(_progress(5))
    assert len(entries) == 3
    assert entries[0].startswith("### Iteration 3")
    assert entries[-1].endswith("Did step 5.")


def test_recent_progress_entries_without_delimiters_is_empty() -> None:
    assert recent_progress_entries("# Progress\n\nsome free text ### not a heading") == []
    assert recent_progress_entries("") == []


def test_context_is_deterministic_and_has_sections_in_order() -> None:
    state = LoopState(task="build a todo list", progress=_progress(1), feedback="Use a sidebar.", iteration=1)
    first = build_context(state, 2)
    assert first == build_context(state, 2)

    positions = [
        first.index("# Ralph Iteration 2"),
        first.index("## Task"),
        first.index("## Progress So Far"),
        first.index("## Feedback / Corrections"),
        first.index("## Instructions"),
    ]
    assert positions == sorted(positions)
    assert "build a todo list" in first
    assert "Did step 1." in first
    assert "Use a sidebar." in first
    assert "You are in iteration 2 of an autonomous development loop." in first
    assert '"complete" to .ralph/status.txt' in first
    assert '"waiting" to .ralph/status.txt' in first


def test_context_first_iteration_placeholders() -> None:
    prompt = build_context(LoopState(), 1)
    assert "No task defined. Please check .ralph/task.md" in prompt
    assert "No progress recorded yet. This is the first iteration." in prompt
    assert "## Feedback / Corrections" not in prompt


def test_context_only_shows_recent_progress() -> None:
    prompt = build_context(LoopState(task="t", progress=_progress(6)), 7)
    assert "Did step 3." not in prompt
    assert "Did step 4." in prompt
    assert "Did step 6." in prompt


def test_template_feedback_is_not_actionable() -> None:
    template = "# Feedback\n\n## Instructions\nAdd feedback here to steer the loop.\n"
    assert actionable_feedback(template) == ""
    prompt = build_context(LoopState(task="t", feedback=template), 1)
    assert "## Feedback / Corrections" not in prompt


def test_gate_feedback_is_kept_with_headings() -> None:
    feedback = "# Quality Gate Failures\n\n## app-exists\nMissing src/App.tsx - create your main App component"
    content = actionable_feedback(feedback)
    assert content.startswith("# Quality Gate Failures")
    assert "## app-exists" in content
    assert "Missing src/App.tsx" in content


def test_agent_headings_stay_inside_their_entry() -> None:
    progress = _progress(3) + "\n\n### Iteration 4 (2026-01-01T00:00:00+00:00)\n\n### Changes\nAdded sidebar\n\n### Next\nWire filters"
    entries = recent_progress_entries(progress)
    assert [entry.splitlines()[0] for entry in entries] == [
        "### Iteration 2 (2026-01-01T00:00:00+00:00)",
        "### Iteration 3 (2026-01-01T00:00:00+00:00)",
        "### Iteration 4 (2026-01-01T00:00:00+00:00)",
    ]
    assert entries[-1].endswith("### Next\nWire filters")


def test_resumed_marker_is_an_entry() -> None:
    progress = _progress(2) + "\n\n### Resumed at iteration 2\n\nStatus was: waiting"
    entries = recent_progress_entries(progress)
    assert entries[-1] == "### Resumed at iteration 2\n\nStatus was: waiting"


def test_free_form_headings_still_split_without_loop_entries() -> None:
    entries = recent_progress_entries("# Progress\n\n### Setup\nScaffolded\n\n### Theme\nApplied preset")
    assert entries == ["### Setup\nScaffolded", "### Theme\nApplied preset"]


def test_escalation_follows_feedback_after_gate_failures() -> None:
    state = LoopState(task="t", feedback="# Quality Gate Failures\n\n## app-exists\nMissing src/App.tsx")
    assert "ACTION REQUIRED" not in build_context(state, 2)

    first = build_context(state, 2, gate_failures=1, max_gate_failures=5)
    assert first.index("## Feedback / Corrections") < first.index("## ACTION REQUIRED") < first.index("## Instructions")
    assert "Read: cat .ralph/feedback.md" in first

    third = build_context(state, 4, gate_failures=3, max_gate_failures=5)
    assert "## CRITICAL - ATTEMPT 4 OF 5" in third
    assert "Gates have failed 3 time(s)" in third


def test_escalation_text_without_cap() -> None:
    assert escalation_text(0) == ""
    assert escalation_text(2).startswith("## CRITICAL - ATTEMPT 3\n")
