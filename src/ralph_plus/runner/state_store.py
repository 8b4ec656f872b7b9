"""Crash-safe JSON store for per-task progress."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any

from ralph_plus.runner.contracts import load_json, write_json
from ralph_plus.runner.errors import SetupError
from ralph_plus.runner.models import (
    ErrorEntry,
    RunState,
    Task,
    TaskState,
    TaskStatus,
    iso_now,
)

logger = logging.getLogger(__name__)

TASK_FIELDS = (
    "status",
    "attempt",
    "duration_sec",
    "total_cost",
    "input_tokens",
    "output_tokens",
    "errors",
    "started_at",
    "finished_at",
)
_MONOTONIC_FIELDS = ("attempt", "duration_sec", "total_cost", "input_tokens", "output_tokens")
_INT_FIELDS = ("attempt", "duration_sec", "input_tokens", "output_tokens")


class StateStore:
    """Durable mapping from task id to ``TaskState``.

    Every mutation rewrites the whole state file through ``write_json``
    before returning, so the on-disk document always reflects the last
    completed mutation.
    """

    def __init__(self, path: Path, *, project: str) -> None:
        self.path = path
        self.project = project
        self._state: RunState | None = None

    @property
    def run_state(self) -> RunState:
        if self._state is None:
            raise RuntimeError("State store is not initialized.")
        return self._state

    def initialize(self, tasks: Iterable[Task], *, resume: bool) -> RunState:
        """Create a fresh run state or load and repair the previous one."""

        tasks = list(tasks)
        if resume and self.path.exists():
            state = self._load()
            repaired = 0
            for task_id, task_state in state.task_states.items():
                if task_state.status == TaskStatus.RUNNING:
                    state.task_states[task_id] = replace(task_state, status=TaskStatus.PENDING)
                    repaired += 1
            for task in tasks:
                if task.task_id not in state.task_states:
                    state.task_states[task.task_id] = _initial_state(task)
            if repaired:
                logger.warning("Reset %d interrupted task(s) from running to pending", repaired)
            logger.info("Resuming from existing state: %s", self.path)
        else:
            state = RunState(
                project=self.project,
                started_at=iso_now(),
                task_states={task.task_id: _initial_state(task) for task in tasks},
            )
        self._state = state
        self._persist()
        return state

    def load_existing(self) -> RunState:
        """Load the state file read-only, for reporting."""

        self._state = self._load()
        return self._state

    def get_field(self, task_id: str, field_name: str) -> Any:
        """Read one task field, falling back to the field default."""

        _check_field(field_name)
        task_state = self.run_state.task_states.get(task_id)
        if task_state is None:
            task_state = TaskState()
        value = getattr(task_state, field_name)
        if field_name == "errors":
            return list(value)
        return value

    def task_state(self, task_id: str) -> TaskState:
        task_state = self.run_state.task_states.get(task_id)
        if task_state is None:
            return TaskState()
        return replace(task_state, errors=list(task_state.errors))

    def set_field(self, task_id: str, field_name: str, value: Any) -> None:
        """Set one task field and persist the whole state."""

        _check_field(field_name)
        if field_name == "errors":
            self.set_error_history(task_id, value)
            return
        task_state = self._ensure_task(task_id)
        value = _coerce_value(field_name, value)
        if field_name in _MONOTONIC_FIELDS and value < getattr(task_state, field_name):
            raise ValueError(
                f"{field_name} must not decrease for task {task_id!r}: "
                f"{getattr(task_state, field_name)} -> {value}",
            )
        setattr(task_state, field_name, value)
        self._persist()

    def set_error_history(self, task_id: str, entries: Iterable[ErrorEntry]) -> None:
        task_state = self._ensure_task(task_id)
        task_state.errors = list(entries)
        self._persist()

    def append_error(self, task_id: str, entry: ErrorEntry) -> None:
        self.set_error_history(task_id, [*self.get_field(task_id, "errors"), entry])

    def finalize(self) -> None:
        """Stamp the run finish time."""

        self.run_state.finished_at = iso_now()
        self._persist()

    def _ensure_task(self, task_id: str) -> TaskState:
        states = self.run_state.task_states
        if task_id not in states:
            states[task_id] = TaskState()
        return states[task_id]

    def _persist(self) -> None:
        write_json(self.path, self.run_state.to_dict())

    def _load(self) -> RunState:
        try:
            raw = load_json(self.path)
            return RunState.from_dict(raw)
        except (OSError, json.JSONDecodeError, TypeError, ValueError) as error:
            raise SetupError(f"State file is unreadable or corrupt: {self.path} ({error})") from error


def _initial_state(task: Task) -> TaskState:
    return TaskState(status=TaskStatus.SUCCESS if task.passes else TaskStatus.PENDING)


def _check_field(field_name: str) -> None:
    if field_name not in TASK_FIELDS:
        raise KeyError(f"Unknown task state field: {field_name!r}")


def _coerce_value(field_name: str, value: Any) -> Any:
    if field_name == "status":
        return TaskStatus(value)
    if field_name in _INT_FIELDS:
        return int(value)
    if field_name == "total_cost":
        return float(value)
    return value
