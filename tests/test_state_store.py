from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from conftest import make_task

from ralph_plus.runner.errors import SetupError
from ralph_plus.runner.models import ErrorEntry, FailureClass, TaskStatus
from ralph_plus.runner.state_store import StateStore

pytestmark = [
    allure.epic("Task Runner"),
    allure.feature("State Store"),
]


def _store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "ralph++" / ".ralph-state-demo.json", project="demo")


def test_fresh_initialize_marks_passed_tasks_as_success(tmp_path: Path) -> None:
    store = _store(tmp_path)

    store.initialize([make_task("US-1", passes=True), make_task("US-2")], resume=False)

    payload = json.loads(store.path.read_text("utf-8"))
    assert payload["project"] == "demo"
    assert payload["finished_at"] is None
    assert payload["task_states"]["US-1"]["status"] == "success"
    assert payload["task_states"]["US-2"]["status"] == "pending"
    assert payload["task_states"]["US-2"]["attempt"] == 0


def test_resume_resets_running_to_pending_and_keeps_attempt(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)
    store.set_field("US-1", "attempt", 2)
    store.set_field("US-1", "status", TaskStatus.RUNNING)

    resumed = _store(tmp_path)
    resumed.initialize([make_task("US-1")], resume=True)

    assert resumed.get_field("US-1", "status") == TaskStatus.PENDING
    assert resumed.get_field("US-1", "attempt") == 2


def test_resume_adds_tasks_missing_from_previous_state(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)
    store.set_field("US-1", "status", TaskStatus.SUCCESS)

    resumed = _store(tmp_path)
    resumed.initialize([make_task("US-1"), make_task("US-2", passes=True)], resume=True)

    assert resumed.get_field("US-1", "status") == TaskStatus.SUCCESS
    assert resumed.get_field("US-2", "status") == TaskStatus.SUCCESS


def test_resume_without_state_file_starts_fresh(tmp_path: Path) -> None:
    store = _store(tmp_path)

    state = store.initialize([make_task("US-1")], resume=True)

    assert state.task_states["US-1"].status == TaskStatus.PENDING
    assert store.path.exists()


def test_get_field_defaults_for_unknown_task(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([], resume=False)

    assert store.get_field("missing", "status") == TaskStatus.PENDING
    assert store.get_field("missing", "attempt") == 0
    assert store.get_field("missing", "total_cost") == 0.0
    assert store.get_field("missing", "errors") == []


def test_every_mutation_is_persisted(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)

    store.set_field("US-1", "input_tokens", 1200)
    store.append_error(
        "US-1",
        ErrorEntry(
            timestamp="2026-01-01T00:00:00Z",
            exit_code=124,
            failure_class=FailureClass.TIMEOUT,
            duration_sec=600,
            raw_error="TIMEOUT: Task exceeded 600s limit",
        ),
    )

    payload = json.loads(store.path.read_text("utf-8"))
    task_state = payload["task_states"]["US-1"]
    assert task_state["input_tokens"] == 1200
    assert task_state["errors"][0]["failure_class"] == "timeout"
    assert task_state["errors"][0]["diagnosis"] == ""
    assert list(store.path.parent.glob("*.tmp")) == []


def test_counters_refuse_to_decrease(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)
    store.set_field("US-1", "total_cost", 0.5)

    with pytest.raises(ValueError, match="total_cost must not decrease"):
        store.set_field("US-1", "total_cost", 0.1)

    store.set_field("US-1", "total_cost", 0.5)
    assert store.get_field("US-1", "total_cost") == 0.5


def test_unknown_field_is_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)

    with pytest.raises(KeyError):
        store.set_field("US-1", "colour", "blue")


def test_corrupt_state_file_is_a_setup_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json", "utf-8")

    with pytest.raises(SetupError, match="unreadable or corrupt"):
        store.initialize([make_task("US-1")], resume=True)


def test_finalize_stamps_finish_time(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.initialize([make_task("US-1")], resume=False)

    store.finalize()

    assert json.loads(store.path.read_text("utf-8"))["finished_at"].endswith("Z")
