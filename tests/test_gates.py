from __future__ import annotations

from pathlib import Path

import pytest

from ralph_loop.gates import (
    QUALITY_GATES,
    REQUIRED_THEME_VARS,
    Gate,
    ProjectContext,
    enhance_build_error,
    generate_feedback,
    has_started_work,
    run_all,
)
from ralph_loop.models import BuildResult, GateOutcome, GateResult

GATES_BY_NAME = {gate.name: gate for gate in QUALITY_GATES}

GOOD_APP = """import { Button, Card } from '@wiggum/stack'
import { Hero } from './sections/Hero'

export default function App() {
  return (
    <main>
      <Hero />
      <Card>
        <Button>Add todo</Button>
      </Card>
    </main>
  )
}
"""

SCAFFOLD_APP = """export default function App() {
  return <div>Edit src/App.tsx to get started</div>
}
"""


def _theme_css(*, include_dark: bool = True, skip: tuple[str, ...] = ()) -> str:
    declarations = "\n".join(f"  {name}: 0.5 0.1 200;" for name in REQUIRED_THEME_VARS if name not in skip)
    css = f":root {{\n{declarations}\n}}\n"
    if include_dark:
        css += f".dark {{\n{declarations}\n}}\n"
    return css


def _write(root: Path, relative: str, content: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _complete_project(root: Path) -> None:
    _write(root, "src/App.tsx", GOOD_APP)
    _write(root, "src/index.css", _theme_css())
    _write(root, ".ralph/summary.md", "Built a todo list with sections and themed cards.")


class _StaticBuilder:
    def __init__(self, result: BuildResult) -> None:
        self.result = result
        self.calls: list[Path] = []

    def build(self, project_root: Path) -> BuildResult:
        self.calls.append(project_root)
        return self.result


def test_registry_names_are_unique_and_ordered() -> None:
    names = [gate.name for gate in QUALITY_GATES]
    assert names == [
        "app-exists",
        "css-no-tailwind-directives",
        "css-theme-complete",
        "no-hardcoded-colors",
        "build-succeeds",
        "app-has-content",
        "has-summary",
    ]
    assert len(REQUIRED_THEME_VARS) == 36


def test_complete_project_passes_every_gate(tmp_path: Path) -> None:
    _complete_project(tmp_path)
    builder = _StaticBuilder(BuildResult(success=True))
    result = run_all(QUALITY_GATES, ProjectContext(tmp_path, builder=builder))
    assert result.passed, result.failed_gates
    assert builder.calls == [tmp_path]
    assert generate_feedback(result.results, QUALITY_GATES) == ""


def test_empty_project_reports_every_failure(tmp_path: Path) -> None:
    result = run_all(QUALITY_GATES, ProjectContext(tmp_path))
    assert not result.passed
    assert result.failed_gates == ["app-exists", "css-theme-complete", "app-has-content", "has-summary"]
    assert len(result.results) == len(QUALITY_GATES)


def test_runner_never_short_circuits() -> None:
    calls: list[str] = []

    def failing(name: str):
        def check(_project: ProjectContext) -> GateResult:
            calls.append(name)
            return GateResult(passed=False, feedback=f"{name} failed")

        return check

    gates = [Gate("a", "first", failing("a")), Gate("b", "second", failing("b"))]
    result = run_all(gates, ProjectContext(Path(".")))
    assert calls == ["a", "b"]
    assert result.failed_gates == ["a", "b"]


def test_raising_gate_becomes_failure(tmp_path: Path) -> None:
    def explode(_project: ProjectContext) -> GateResult:
        raise RuntimeError("disk on fire")

    gates = [
        Gate("boom", "raises", explode),
        Gate("ok", "passes", lambda _project: GateResult(passed=True)),
    ]
    result = run_all(gates, ProjectContext(tmp_path))
    assert not result.passed
    assert result.results[0].result.feedback == "Gate error: disk on fire"
    assert result.results[1].result.passed


def test_gate_returning_wrong_type_becomes_failure(tmp_path: Path) -> None:
    gates = [
        Gate("no-return", "forgets to return", lambda _project: None),  # type: ignore[arg-type,return-value]
        Gate("dict-return", "returns a mapping", lambda _project: {"passed": True}),  # type: ignore[arg-type,return-value]
        Gate("ok", "passes", lambda _project: GateResult(passed=True)),
    ]
    result = run_all(gates, ProjectContext(tmp_path))
    assert not result.passed
    assert result.failed_gates == ["no-return", "dict-return"]
    assert result.results[0].result.feedback == "Gate error: no-return returned NoneType"
    assert result.results[1].result.feedback == "Gate error: dict-return returned dict"
    assert result.results[2].result.passed


def test_has_started_work_requires_substantive_app(tmp_path: Path) -> None:
    project = ProjectContext(tmp_path)
    assert not has_started_work(project)
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("export default function App() {}\n", encoding="utf-8")
    assert not has_started_work(project)
    (tmp_path / "src" / "App.tsx").write_text(GOOD_APP, encoding="utf-8")
    assert has_started_work(project)


def test_generate_feedback_lists_failures_with_hints() -> None:
    gates = [Gate("first", "d", lambda _p: GateResult(passed=True), fix_hint="FIX: first"),
             Gate("second", "d", lambda _p: GateResult(passed=True), fix_hint="FIX: second")]
    results = [
        GateOutcome(gate="first", result=GateResult(passed=False, feedback="first is broken")),
        GateOutcome(gate="ok", result=GateResult(passed=True)),
        GateOutcome(gate="second", result=GateResult(passed=False)),
    ]
    feedback = generate_feedback(results, gates)
    assert feedback.startswith("# Quality Gate Failures")
    assert "## first\nfirst is broken\n\nFIX: first" in feedback
    assert "## second\nFailed without specific feedback\n\nFIX: second" in feedback
    assert "## ok" not in feedback
    assert feedback.index("## first") < feedback.index("## second")
    assert feedback.endswith("Fix these issues and mark status as complete again.")


def test_app_exists_feedback_mentions_missing_file(tmp_path: Path) -> None:
    result = GATES_BY_NAME["app-exists"].check(ProjectContext(tmp_path))
    assert not result.passed
    assert "src/App.tsx" in (result.feedback or "")


def test_tailwind_directives_fail(tmp_path: Path) -> None:
    _write(tmp_path, "src/index.css", "@tailwind base;\n" + _theme_css())
    result = GATES_BY_NAME["css-no-tailwind-directives"].check(ProjectContext(tmp_path))
    assert not result.passed
    assert "@tailwind" in (result.feedback or "")


def test_tailwind_gate_passes_without_css(tmp_path: Path) -> None:
    assert GATES_BY_NAME["css-no-tailwind-directives"].check(ProjectContext(tmp_path)).passed


def test_theme_gate_lists_missing_vars_and_dark_block(tmp_path: Path) -> None:
    _write(tmp_path, "src/index.css", _theme_css(include_dark=False, skip=("--chart-5", "--ring")))
    result = GATES_BY_NAME["css-theme-complete"].check(ProjectContext(tmp_path))
    assert not result.passed
    feedback = result.feedback or ""
    assert "Missing 2 required var(s): --ring, --chart-5" in feedback
    assert ".dark" in feedback


def test_theme_gate_does_not_confuse_prefixed_vars(tmp_path: Path) -> None:
    # --card-foreground alone must not satisfy --card
    _write(tmp_path, "src/index.css", _theme_css(skip=("--card",)))
    result = GATES_BY_NAME["css-theme-complete"].check(ProjectContext(tmp_path))
    assert not result.passed
    assert "--card" in (result.feedback or "")


@pytest.mark.parametrize(
    ("source", "label"),
    [
        ('<div className="bg-red-500 text-white" />', "Tailwind colors"),
        ("const style = { color: 'oklch(0.5 0.2 20)' }", "Raw color values"),
        ("const accent = '#ff8800'", "Hex colors"),
    ],
)
def test_hardcoded_colors_are_detected(tmp_path: Path, source: str, label: str) -> None:
    _write(tmp_path, "src/components/Widget.tsx", source)
    result = GATES_BY_NAME["no-hardcoded-colors"].check(ProjectContext(tmp_path))
    assert not result.passed
    assert f"components/Widget.tsx: {label}" in (result.feedback or "")


def test_semantic_colors_pass(tmp_path: Path) -> None:
    _write(tmp_path, "src/App.tsx", '<div className="bg-primary text-muted-foreground border-accent" />')
    _write(tmp_path, "src/styles.css", "a { color: #ff0000; }")
    assert GATES_BY_NAME["no-hardcoded-colors"].check(ProjectContext(tmp_path)).passed


def test_build_gate_passes_without_builder(tmp_path: Path) -> None:
    assert GATES_BY_NAME["build-succeeds"].check(ProjectContext(tmp_path)).passed


def test_build_failure_writes_report_and_success_clears_it(tmp_path: Path) -> None:
    error = 'No matching export in "https://esm.sh/lucide-react" for import "Close"'
    failing = ProjectContext(tmp_path, builder=_StaticBuilder(BuildResult(success=False, errors=[error])))
    result = GATES_BY_NAME["build-succeeds"].check(failing)
    assert not result.passed
    assert "Use X instead" in (result.feedback or "")

    report = tmp_path / ".ralph" / "build-errors.md"
    assert report.is_file()
    assert error in report.read_text(encoding="utf-8")

    passing = ProjectContext(tmp_path, builder=_StaticBuilder(BuildResult(success=True)))
    assert GATES_BY_NAME["build-succeeds"].check(passing).passed
    assert not report.exists()


def test_enhance_build_error_hints() -> None:
    stack = enhance_build_error('No matching export in "/node_modules/@wiggum/stack/index.js" for import "Navbar"')
    assert '"Navbar" is not exported from @wiggum/stack' in stack
    css = enhance_build_error('Expected ";" but found "http-url:https://fonts.googleapis.com"')
    assert "<link>" in css
    assert enhance_build_error("plain failure") == "plain failure"


def test_scaffold_app_fails_content_gate(tmp_path: Path) -> None:
    _write(tmp_path, "src/App.tsx", SCAFFOLD_APP)
    result = GATES_BY_NAME["app-has-content"].check(ProjectContext(tmp_path))
    assert not result.passed
    assert "scaffold" in (result.feedback or "")


def test_content_gate_accepts_component_structure(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "src/App.tsx",
        "export default function App() {\n  return <Layout><Header /><List /><Footer /></Layout>\n}\n",
    )
    assert GATES_BY_NAME["app-has-content"].check(ProjectContext(tmp_path)).passed


def test_content_gate_rejects_bare_markup(tmp_path: Path) -> None:
    _write(tmp_path, "src/App.tsx", "export default function App() {\n  return <div>Hello</div>\n}\n")
    assert not GATES_BY_NAME["app-has-content"].check(ProjectContext(tmp_path)).passed


def test_summary_gate_requires_meaningful_text(tmp_path: Path) -> None:
    gate = GATES_BY_NAME["has-summary"]
    assert not gate.check(ProjectContext(tmp_path)).passed
    _write(tmp_path, ".ralph/summary.md", "done")
    assert not gate.check(ProjectContext(tmp_path)).passed
    _write(tmp_path, ".ralph/summary.md", "Built a todo list with filters.")
    assert gate.check(ProjectContext(tmp_path)).passed
