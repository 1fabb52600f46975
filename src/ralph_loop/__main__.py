"""Entry point for `python -m ralph_loop` and the `ralph` CLI script."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from ralph_loop.agent_runtime import DeepAgentCaller
from ralph_loop.build import CommandBuilder
from ralph_loop.checkpoint import GitSourceControl
from ralph_loop.loop import IterationController
from ralph_loop.models import LoopRunResult, LoopStatus
from ralph_loop.settings import RuntimeSettings
from ralph_loop.state_store import AlreadyInitializedError, LoopStateStore, NotInitializedError
from ralph_loop.status import render_status


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got: {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got: {parsed}")
    return parsed


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ralph", description="Autonomous fresh-context iteration loop")
    parser.add_argument(
        "--project-root",
        type=Path,
        default=None,
        help="Project directory holding .ralph/ (default: RALPH_PROJECT_ROOT or cwd)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create .ralph/ state for a new task")
    init_parser.add_argument("task", nargs="+", help="Task description")
    init_parser.add_argument("--force", action="store_true", help="Discard any existing loop state")
    init_parser.add_argument("--max-iterations", "-n", type=_positive_int, default=None)

    run_parser = subparsers.add_parser("run", help="Start the autonomous iteration loop")
    run_parser.add_argument("--max-iterations", "-n", type=_positive_int, default=None)

    resume_parser = subparsers.add_parser("resume", help="Resume a paused, idle or failed loop")
    resume_parser.add_argument("--max-iterations", "-n", type=_positive_int, default=None)

    status_parser = subparsers.add_parser("status", help="Show current loop state")
    status_parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def build_controller(project_root: Path, settings: RuntimeSettings) -> IterationController:
    """Wire the controller with the deep agent, build command and git checkpoints."""
    store = LoopStateStore(project_root)
    builder = CommandBuilder(settings.build_argv) if settings.build_command else None
    return IterationController(
        store,
        DeepAgentCaller(project_root, settings),
        builder=builder,
        source_control=GitSourceControl(project_root),
        config=store.read_config(settings.loop_defaults()),
    )


def _report(result: LoopRunResult) -> int:
    print(result.summary)
    return 1 if result.status is LoopStatus.ERROR else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = RuntimeSettings.from_env()
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    project_root = (args.project_root or settings.project_root_path).resolve()
    store = LoopStateStore(project_root)

    try:
        if args.command == "init":
            config = store.read_config(settings.loop_defaults()) if args.force else settings.loop_defaults()
            if args.max_iterations is not None:
                config = config.model_copy(update={"max_iterations": args.max_iterations})
            store.init(" ".join(args.task), force=args.force, config=config)
            print(f"Initialized {store.root}")
            print('Run "ralph run" to start the loop.')
            return 0

        if args.command == "status":
            if not store.exists():
                raise NotInitializedError(f'{store.root} not found. Run "ralph init" first.')
            print(render_status(store.read(), verbose=args.verbose))
            return 0

        controller = build_controller(project_root, settings)
        if args.command == "run":
            return _report(controller.run(args.max_iterations))
        return _report(controller.resume(args.max_iterations))
    except AlreadyInitializedError:
        logging.error('%s already exists. Use "ralph init --force" to start over.', store.root)
        return 1
    except (OSError, ValueError) as exc:
        logging.error("ralph %s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
