from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LoopStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETE = "complete"
    ERROR = "error"

    @classmethod
    def parse(cls, raw: str | None) -> "LoopStatus":
        """Parse persisted status text, falling back to ``IDLE`` for anything unknown."""
        if raw is None:
            return cls.IDLE
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.IDLE

    @property
    def stops_loop(self) -> bool:
        return self in {LoopStatus.COMPLETE, LoopStatus.WAITING}


class LoopState(BaseModel):
    """Snapshot of the ``.ralph/`` files, rebuilt from disk on every read."""

    model_config = ConfigDict(frozen=True)

    task: str = ""
    progress: str = ""
    feedback: str = ""
    iteration: int = Field(default=0, ge=0)
    status: LoopStatus = LoopStatus.IDLE


class LoopConfig(BaseModel):
    """Per-project loop options persisted as ``.ralph/config.json``."""

    max_iterations: int = Field(default=50, ge=1)
    checkpoint_interval: int = Field(default=1, ge=0)
    iteration_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_gate_failures: int = Field(default=5, ge=0)
    progress_summary_chars: int = Field(default=500, ge=1)


class GateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    feedback: str | None = None


class GateOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    gate: str
    result: GateResult


class GatesRunResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    results: list[GateOutcome]

    @property
    def failed_gates(self) -> list[str]:
        return [outcome.gate for outcome in self.results if not outcome.result.passed]


class BuildResult(BaseModel):
    success: bool
    errors: list[str] = Field(default_factory=list)


class IterationOutcome(BaseModel):
    """What happened during one controller step."""

    iteration: int
    status: LoopStatus
    agent_called: bool = False
    message: str = ""
    error: str | None = None
    gates: GatesRunResult | None = None
    checkpointed: bool | None = None


class LoopRunResult(BaseModel):
    """Report returned by every terminal stop of the loop."""

    iterations: int
    status: LoopStatus
    lines: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def summary(self) -> str:
        return "\n".join(self.lines)
