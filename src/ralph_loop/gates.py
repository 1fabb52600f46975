"""Quality gates: objective validation of an agent's completion claim.

Gates run when the agent marks the loop ``complete`` and decide whether the
work actually meets the bar.  The verdict is harness-controlled; the agent's
own claim is never accepted on its own.

Every gate is a narrow, independent predicate over the project tree.  No
gate reads another gate's result, and the runner executes all of them so
the feedback lists everything that is still wrong.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Sequence

from .build import BuildCollaborator
from .models import GateOutcome, GateResult, GatesRunResult
from .state_store import LoopStateStore, utc_timestamp

logger = logging.getLogger(__name__)

GENERIC_FAILURE_FEEDBACK = "Failed without specific feedback"
BUILD_ERRORS_ARTIFACT = "build-errors.md"
SUMMARY_ARTIFACT = "summary.md"
STARTED_WORK_APP_CHARS = 200

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass
class ProjectContext:
    """The project handed to every gate check."""

    root: Path
    builder: BuildCollaborator | None = None
    store: LoopStateStore = field(init=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.store = LoopStateStore(self.root)

    def path(self, relative: str) -> Path:
        return self.root / relative

    def read_text(self, relative: str) -> str | None:
        try:
            return self.path(relative).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None


@dataclass(frozen=True)
class Gate:
    name: str
    description: str
    check: Callable[[ProjectContext], GateResult]
    fix_hint: str = ""


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def run_all(gates: Sequence[Gate], project: ProjectContext) -> GatesRunResult:
    """Run every gate in registry order and aggregate the results.

    A gate that raises, or returns something other than a ``GateResult``,
    counts as a failing gate whose feedback is the error text; it never
    aborts the evaluation of the remaining gates.
    """
    results: list[GateOutcome] = []
    for gate in gates:
        try:
            result = gate.check(project)
            if not isinstance(result, GateResult):
                logger.warning("Gate %s returned %s instead of a GateResult", gate.name, type(result).__name__)
                result = GateResult(passed=False, feedback=f"Gate error: {gate.name} returned {type(result).__name__}")
            outcome = GateOutcome(gate=gate.name, result=result)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Gate %s raised: %s", gate.name, exc)
            outcome = GateOutcome(gate=gate.name, result=GateResult(passed=False, feedback=f"Gate error: {exc}"))
        results.append(outcome)

    passed = all(outcome.result.passed for outcome in results)
    if not passed:
        failed = [outcome.gate for outcome in results if not outcome.result.passed]
        logger.info("Quality gates failed: %s", ", ".join(failed))
    return GatesRunResult(passed=passed, results=results)


def generate_feedback(results: Iterable[GateOutcome], gates: Sequence[Gate] = ()) -> str:
    """Render markdown feedback for the failing gates, or ``""`` when none failed.

    Args:
        results: Gate outcomes in registry order.
        gates: Gate definitions used to look up fix hints by name.
    """
    hints = {gate.name: gate.fix_hint for gate in gates}
    failures = [outcome for outcome in results if not outcome.result.passed]
    if not failures:
        return ""

    lines = ["# Quality Gate Failures", ""]
    for outcome in failures:
        lines.append(f"## {outcome.gate}")
        lines.append(outcome.result.feedback or GENERIC_FAILURE_FEEDBACK)
        hint = hints.get(outcome.gate)
        if hint:
            lines.append("")
            lines.append(hint)
        lines.append("")
    lines.append("---")
    lines.append("Fix these issues and mark status as complete again.")
    return "\n".join(lines)


def has_started_work(project: ProjectContext) -> bool:
    """Whether ``src/App.tsx`` holds more than a stub.

    Gate failures before this point belong to the orientation phase and are
    not counted against the agent.
    """
    app = project.read_text("src/App.tsx")
    return app is not None and len(app) > STARTED_WORK_APP_CHARS


# ---------------------------------------------------------------------------
# Gate checks
# ---------------------------------------------------------------------------

REQUIRED_THEME_VARS = (
    # base
    "--background", "--foreground", "--card", "--card-foreground",
    "--popover", "--popover-foreground", "--primary", "--primary-foreground",
    "--secondary", "--secondary-foreground", "--muted", "--muted-foreground",
    "--accent", "--accent-foreground",
    # utility
    "--destructive", "--destructive-foreground", "--border", "--input", "--ring",
    "--success", "--success-foreground", "--warning", "--warning-foreground",
    # sidebar
    "--sidebar-background", "--sidebar-foreground", "--sidebar-primary",
    "--sidebar-primary-foreground", "--sidebar-accent", "--sidebar-accent-foreground",
    "--sidebar-border", "--sidebar-ring",
    # chart
    "--chart-1", "--chart-2", "--chart-3", "--chart-4", "--chart-5",
)

_CSS_VAR_DECL_RE = re.compile(r"(--[\w-]+)\s*:")
_JSX_COMPONENT_RE = re.compile(r"<[A-Z][a-zA-Z]*[\s/>]")
_SCAFFOLD_SIGNATURE = "Edit src/App.tsx to get started"

TW_COLOR_RE = re.compile(
    r"\b(?:text|bg|border|ring|shadow|from|to|via|divide|outline|decoration|placeholder|fill|stroke)-"
    r"(?:red|orange|amber|yellow|lime|green|emerald|teal|cyan|sky|blue|indigo|violet|purple|fuchsia|pink|rose"
    r"|slate|gray|zinc|neutral|stone)-\d{2,3}\b"
)
RAW_COLOR_RE = re.compile(r"(?:oklch|hsla?|rgba?)\s*\([^)]+\)")
HEX_RE = re.compile(r"(?:['\"`]|:\s*)#(?:[0-9a-fA-F]{8}|[0-9a-fA-F]{6}|[0-9a-fA-F]{3,4})\b")

_LUCIDE_EXPORT_RE = re.compile(r'No matching export in "[^"]*lucide-react[^"]*" for import "(\w+)"')
_STACK_EXPORT_RE = re.compile(r'No matching export in "[^"]*@wiggum/stack[^"]*" for import "(\w+)"')
_LUCIDE_FIXES = {
    "Terminal2": "Terminal or TerminalSquare",
    "Close": "X",
    "Checkmark": "Check",
    "Error": "AlertCircle",
    "Warning": "AlertTriangle",
}


def _unique(matches: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(matches))


def _preview(values: list[str], limit: int) -> str:
    shown = ", ".join(values[:limit])
    if len(values) > limit:
        shown += f" (+{len(values) - limit})"
    return shown


def check_app_exists(project: ProjectContext) -> GateResult:
    if project.path("src/App.tsx").is_file():
        return GateResult(passed=True)
    return GateResult(passed=False, feedback="Missing src/App.tsx - create your main App component")


def check_css_no_tailwind_directives(project: ProjectContext) -> GateResult:
    css = project.read_text("src/index.css")
    if not css:
        return GateResult(passed=True)
    if "@tailwind" in css:
        return GateResult(
            passed=False,
            feedback=(
                "src/index.css contains @tailwind directives. The build system handles Tailwind "
                "compilation automatically. Use CSS variables instead."
            ),
        )
    return GateResult(passed=True)


def check_css_theme_complete(project: ProjectContext) -> GateResult:
    css = project.read_text("src/index.css")
    if not css:
        return GateResult(
            passed=False,
            feedback="Missing src/index.css. Run 'theme preset <name> --apply' to generate a complete theme.",
        )

    declared = set(_CSS_VAR_DECL_RE.findall(css))
    missing = [name for name in REQUIRED_THEME_VARS if name not in declared]
    has_dark = ".dark" in css
    if not missing and has_dark:
        return GateResult(passed=True)

    parts: list[str] = []
    if missing:
        parts.append(f"Missing {len(missing)} required var(s): {', '.join(missing)}")
    if not has_dark:
        parts.append("Missing .dark {} block for dark mode")
    return GateResult(
        passed=False,
        feedback=". ".join(parts) + ". Run 'theme preset <name> --apply' to generate a complete theme.",
    )


def scan_hardcoded_colors(src_dir: Path) -> list[str]:
    """Return one violation line per colour family per ``.ts``/``.tsx`` file under *src_dir*."""
    violations: list[str] = []
    if not src_dir.is_dir():
        return violations
    for path in sorted(src_dir.rglob("*")):
        if path.suffix not in {".ts", ".tsx"} or not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        name = path.relative_to(src_dir).as_posix()
        tailwind = _unique(match.group(0) for match in TW_COLOR_RE.finditer(content))
        if tailwind:
            violations.append(f"{name}: Tailwind colors - {_preview(tailwind, 4)}")
        raw = _unique(match.group(0) for match in RAW_COLOR_RE.finditer(content))
        if raw:
            violations.append(f"{name}: Raw color values - {_preview(raw, 3)}")
        hexes = _unique(match.group(0) for match in HEX_RE.finditer(content))
        if hexes:
            violations.append(f"{name}: Hex colors - {_preview(hexes, 3)}")
    return violations


def check_no_hardcoded_colors(project: ProjectContext) -> GateResult:
    violations = scan_hardcoded_colors(project.path("src"))
    if not violations:
        return GateResult(passed=True)
    return GateResult(
        passed=False,
        feedback="\n".join(["Hardcoded colors detected:", *violations]),
    )


def enhance_build_error(message: str) -> str:
    """Append an actionable suggestion to well-known build error messages."""
    message = re.sub(r"<(\w+)>\s+is used in JSX", r"\1 is used in JSX", message)

    lucide = _LUCIDE_EXPORT_RE.search(message)
    if lucide:
        icon = lucide.group(1)
        suggestion = _LUCIDE_FIXES.get(icon, "a valid icon from lucide.dev/icons")
        return f'{message}\n\nFix: "{icon}" doesn\'t exist in lucide-react. Use {suggestion} instead.'

    stack = _STACK_EXPORT_RE.search(message)
    if stack:
        return (
            f'{message}\n\nFix: "{stack.group(1)}" is not exported from @wiggum/stack. '
            "Check the stack skill for available components."
        )

    if 'Expected ";"' in message and "http-url:" in message:
        return (
            f"{message}\n\nFix: Don't use @import url() for external fonts/CSS. "
            "Add a <link> tag to index.html instead."
        )

    if "No matching export" in message:
        return f"{message}\n\nFix: Check import names against the actual exports of the module."

    return message


def check_build_succeeds(project: ProjectContext) -> GateResult:
    if project.builder is None:
        logger.debug("No build collaborator configured; build gate skipped")
        return GateResult(passed=True)

    result = project.builder.build(project.root)
    if result.success:
        project.store.remove_artifact(BUILD_ERRORS_ARTIFACT)
        return GateResult(passed=True)

    raw = result.errors or ["Unknown build error"]
    enhanced = "\n\n".join(enhance_build_error(message) for message in raw)
    report = "\n".join(
        [
            "# Build Errors",
            "",
            f"Timestamp: {utc_timestamp()}",
            "",
            enhanced,
            "",
            "## Raw build output",
            "```",
            *raw,
            "```",
            "",
        ]
    )
    try:
        project.store.write_artifact(BUILD_ERRORS_ARTIFACT, report)
    except OSError as exc:
        logger.warning("Could not write %s: %s", BUILD_ERRORS_ARTIFACT, exc)
    return GateResult(passed=False, feedback=f"Build failed:\n{enhanced}")


def check_app_has_content(project: ProjectContext) -> GateResult:
    content = project.read_text("src/App.tsx")
    if not content:
        return GateResult(passed=False, feedback="Cannot read src/App.tsx")

    if _SCAFFOLD_SIGNATURE in content:
        return GateResult(
            passed=False,
            feedback="src/App.tsx is unchanged scaffold. Build the UI the user requested.",
        )

    has_stack_imports = "from '@wiggum/stack'" in content
    has_local_imports = "from './sections/" in content or "from './components/" in content
    component_count = len(_JSX_COMPONENT_RE.findall(content))
    if has_stack_imports or has_local_imports or component_count > 3:
        return GateResult(passed=True)
    return GateResult(
        passed=False,
        feedback="src/App.tsx lacks meaningful content. Use @wiggum/stack components or create sections/components.",
    )


def check_has_summary(project: ProjectContext) -> GateResult:
    summary = project.store.read_artifact(SUMMARY_ARTIFACT)
    if summary is None or len(summary.strip()) < 20:
        return GateResult(
            passed=False,
            feedback=(
                "Missing or empty .ralph/summary.md. Write a brief summary of what you built "
                "before marking complete."
            ),
        )
    return GateResult(passed=True)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

QUALITY_GATES: tuple[Gate, ...] = (
    Gate(
        name="app-exists",
        description="src/App.tsx must exist",
        check=check_app_exists,
        fix_hint=(
            "FIX: Create src/App.tsx with a component that renders the requested UI "
            "and export it as the default export."
        ),
    ),
    Gate(
        name="css-no-tailwind-directives",
        description="CSS must not contain @tailwind directives",
        check=check_css_no_tailwind_directives,
        fix_hint=(
            "FIX: Remove the @tailwind base/components/utilities lines from src/index.css. "
            "Keep your utility classes; the build compiles Tailwind automatically."
        ),
    ),
    Gate(
        name="css-theme-complete",
        description="CSS must define all 36 required theme variables in :root and .dark",
        check=check_css_theme_complete,
        fix_hint=(
            "FIX: Run 'theme preset <name> --apply' to write :root and .dark blocks with every "
            "required variable to src/index.css, then mark status as complete again."
        ),
    ),
    Gate(
        name="no-hardcoded-colors",
        description="Source files must use theme tokens, not hardcoded colors",
        check=check_no_hardcoded_colors,
        fix_hint=(
            "FIX: Replace hardcoded colors with semantic tokens (text-primary, bg-accent, border-muted, "
            "bg-success). Use var(--primary) style CSS variables instead of raw oklch()/hsl()/rgb()/#hex "
            "values, and chart-1 through chart-5 for data categories."
        ),
    ),
    Gate(
        name="build-succeeds",
        description="Project must build without errors",
        check=check_build_succeeds,
        fix_hint=(
            "FIX: Check .ralph/build-errors.md for the full report. Common causes: missing imports, "
            "wrong icon names, wrong @wiggum/stack exports, @import url() in CSS."
        ),
    ),
    Gate(
        name="app-has-content",
        description="App.tsx should have meaningful content beyond scaffold",
        check=check_app_has_content,
        fix_hint=(
            "FIX: Replace the scaffold in src/App.tsx with real content built from @wiggum/stack "
            "components, or split it into src/sections/ and src/components/ and import those."
        ),
    ),
    Gate(
        name="has-summary",
        description="The agent must write a summary of what was built",
        check=check_has_summary,
        fix_hint='FIX: echo "Built a [description] with [key features]." > .ralph/summary.md',
    ),
)
