"""Domain models for the task runner and its persisted state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class FailureClass(str, Enum):
    """Classification of one failed attempt, in priority order."""

    TIMEOUT = "timeout"
    MAX_TURNS = "max_turns"
    EMPTY_RESULT = "empty_result"
    GENERIC = "generic"


class TaskOutcome(str, Enum):
    """Terminal result of one Retry Controller invocation."""

    SUCCESS = "success"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass(slots=True, frozen=True)
class Task:
    """One user story as read from the PRD document."""

    task_id: str
    title: str
    description: str
    acceptance_criteria: tuple[str, ...]
    priority: int
    passes: bool = False
    notes: str = ""


@dataclass(slots=True)
class ErrorEntry:
    """Append-only record of one failed attempt."""

    timestamp: str
    exit_code: int
    failure_class: FailureClass
    duration_sec: int
    raw_error: str
    diagnosis: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["failure_class"] = self.failure_class.value
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ErrorEntry:
        return cls(
            timestamp=str(raw.get("timestamp", "")),
            exit_code=_coerce_int(raw.get("exit_code")),
            failure_class=_coerce_failure_class(raw.get("failure_class")),
            duration_sec=_coerce_int(raw.get("duration_sec")),
            raw_error=str(raw.get("raw_error", "")),
            diagnosis=str(raw.get("diagnosis", "")),
        )


@dataclass(slots=True)
class TaskState:
    """Mutable per-task progress owned by the state store."""

    status: TaskStatus = TaskStatus.PENDING
    attempt: int = 0
    duration_sec: int = 0
    total_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    errors: list[ErrorEntry] = field(default_factory=list)
    started_at: str | None = None
    finished_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "attempt": self.attempt,
            "duration_sec": self.duration_sec,
            "total_cost": self.total_cost,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "errors": [entry.to_dict() for entry in self.errors],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskState:
        errors_raw = raw.get("errors") or []
        if not isinstance(errors_raw, list):
            raise TypeError("task_state.errors must be an array")
        return cls(
            status=TaskStatus(raw.get("status", TaskStatus.PENDING.value)),
            attempt=_coerce_int(raw.get("attempt")),
            duration_sec=_coerce_int(raw.get("duration_sec")),
            total_cost=float(raw.get("total_cost") or 0.0),
            input_tokens=_coerce_int(raw.get("input_tokens")),
            output_tokens=_coerce_int(raw.get("output_tokens")),
            errors=[ErrorEntry.from_dict(item) for item in errors_raw if isinstance(item, dict)],
            started_at=raw.get("started_at"),
            finished_at=raw.get("finished_at"),
        )


@dataclass(slots=True)
class RunState:
    """Process-wide record of one run."""

    project: str
    started_at: str
    finished_at: str | None = None
    task_states: dict[str, TaskState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "task_states": {
                task_id: state.to_dict() for task_id, state in self.task_states.items()
            },
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RunState:
        states_raw = raw.get("task_states")
        if not isinstance(states_raw, dict):
            raise TypeError("state.task_states must be an object")
        return cls(
            project=str(raw.get("project", "")),
            started_at=str(raw.get("started_at", "")),
            finished_at=raw.get("finished_at"),
            task_states={
                str(task_id): TaskState.from_dict(state)
                for task_id, state in states_raw.items()
                if isinstance(state, dict)
            },
        )


@dataclass(slots=True, frozen=True)
class NormalizedResponse:
    """Backend response reduced to the fields the controller consumes."""

    is_error: bool
    result: str = ""
    cost_usd: float = 0.0
    subtype: str = "unknown"
    num_turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_create_tokens: int = 0

    @property
    def billed_input_tokens(self) -> int:
        """Input tokens including cache reads and cache writes."""

        return self.input_tokens + self.cache_read_tokens + self.cache_create_tokens


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def iso_now() -> str:
    """Current UTC timestamp formatted the way the state file stores it."""

    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def _coerce_int(value: object) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _coerce_failure_class(value: object) -> FailureClass:
    try:
        return FailureClass(str(value))
    except ValueError:
        return FailureClass.GENERIC
