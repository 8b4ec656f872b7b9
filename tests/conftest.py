"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import stat
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from ralph_plus.config import RunnerSettings
from ralph_plus.runner.backend import BackendRunError, BackendRunResult, ClaudeBackend
from ralph_plus.runner.controller import RetryController
from ralph_plus.runner.diagnosis import DiagnosisBuilder
from ralph_plus.runner.models import NormalizedResponse, Task
from ralph_plus.runner.state_store import StateStore
from ralph_plus.runner.workdir import AttemptArtifacts

_RALPH_ENV = (
    "RALPH_ENGINE",
    "RALPH_MAX_RETRIES",
    "RALPH_TIMEOUT",
    "RALPH_MAX_TURNS",
    "RALPH_CODEX_MODEL",
    "RALPH_DIAG_LEARN",
    "RALPH_CONVERT_PROMPT",
)


@pytest.fixture(autouse=True)
def _clean_ralph_env(monkeypatch):
    for name in _RALPH_ENV:
        monkeypatch.delenv(name, raising=False)


def make_task(task_id: str = "US-1", *, priority: int = 1, passes: bool = False) -> Task:
    return Task(
        task_id=task_id,
        title=f"Story {task_id}",
        description=f"Implement {task_id}.",
        acceptance_criteria=("Tests pass", "Typecheck passes"),
        priority=priority,
        passes=passes,
    )


def claude_output(
    result: str = "done",
    *,
    is_error: bool = False,
    subtype: str = "success",
    cost: float = 0.0,
    input_tokens: int = 0,
    output_tokens: int = 0,
    num_turns: int = 1,
) -> str:
    return json.dumps(
        {
            "type": "result",
            "subtype": subtype,
            "is_error": is_error,
            "result": result,
            "num_turns": num_turns,
            "total_cost_usd": cost,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        },
    )


@dataclass
class ScriptedBackend:
    """Backend double that replays queued executions and records prompts."""

    executions: list[BackendRunResult | BackendRunError] = field(default_factory=list)
    diagnoses: list[str | BackendRunError] = field(default_factory=list)
    prompts: list[str] = field(default_factory=list)
    diagnosis_prompts: list[str] = field(default_factory=list)
    name: str = "claude"
    display_name: str = "Scripted"
    executable: str = "scripted"

    def execute(self, prompt: str, timeout_seconds: int) -> BackendRunResult:
        self.prompts.append(prompt)
        outcome = self.executions.pop(0)
        if isinstance(outcome, BackendRunError):
            raise outcome
        return outcome

    def convert_once(self, prompt: str) -> str:
        raise BackendRunError("conversion is not scripted")

    def diagnose_once(self, prompt: str) -> str:
        self.diagnosis_prompts.append(prompt)
        outcome = self.diagnoses.pop(0) if self.diagnoses else "Root cause: unknown"
        if isinstance(outcome, BackendRunError):
            raise outcome
        return outcome

    def parse(self, raw_output: str) -> NormalizedResponse:
        return ClaudeBackend(max_turns=50).parse(raw_output)


def succeeded(stdout: str | None = None) -> BackendRunResult:
    return BackendRunResult(
        exit_code=0,
        timed_out=False,
        stdout=claude_output() if stdout is None else stdout,
        stderr="",
    )


def timed_out() -> BackendRunResult:
    return BackendRunResult(exit_code=124, timed_out=True, stdout="", stderr="")


@dataclass
class RecordingTaskSource:
    reports: list[tuple[str, bool, str]] = field(default_factory=list)

    def report(self, task_id: str, passed: bool, note: str) -> None:
        self.reports.append((task_id, passed, note))


@dataclass
class FakeWorkspace:
    revision: str = "abc123"
    diff: str = ""
    diff_requests: list[str] = field(default_factory=list)

    def current_revision(self) -> str:
        return self.revision

    def diff_since(self, revision: str) -> str:
        self.diff_requests.append(revision)
        return self.diff


@dataclass
class ControllerHarness:
    controller: RetryController
    backend: ScriptedBackend
    store: StateStore
    source: RecordingTaskSource
    logs_dir: Path


@pytest.fixture()
def build_controller(tmp_path: Path) -> Callable[..., ControllerHarness]:
    def _build(
        *,
        executions: list[BackendRunResult | BackendRunError],
        tasks: list[Task] | None = None,
        workspace: FakeWorkspace | None = None,
        diagnoses: list[str | BackendRunError] | None = None,
        **settings_changes,
    ) -> ControllerHarness:
        settings = RunnerSettings(**{"max_retries": 3, **settings_changes})
        backend = ScriptedBackend(executions=list(executions), diagnoses=list(diagnoses or []))
        store = StateStore(tmp_path / "state.json", project="demo")
        store.initialize(tasks or [make_task()], resume=False)
        source = RecordingTaskSource()
        logs_dir = tmp_path / "logs"
        controller = RetryController(
            settings=settings,
            backend=backend,
            store=store,
            task_source=source,
            artifacts=AttemptArtifacts(logs_dir),
            diagnosis=DiagnosisBuilder(
                backend=backend,
                learning=settings.diag_learn,
                workspace=workspace or FakeWorkspace(),
            ),
        )
        return ControllerHarness(
            controller=controller,
            backend=backend,
            store=store,
            source=source,
            logs_dir=logs_dir,
        )

    return _build


def write_fake_agent(bin_dir: Path, name: str, body: str) -> Path:
    """Install an executable named ``name`` that runs ``body`` as Python."""

    bin_dir.mkdir(parents=True, exist_ok=True)
    implementation = bin_dir / f"{name}_impl.py"
    implementation.write_text(body.strip() + "\n", "utf-8")
    path = bin_dir / name
    if os.name == "nt":
        launcher = bin_dir / f"{name}.cmd"
        launcher.write_text(
            f'@echo off\r\n"{sys.executable}" "{implementation}" %*\r\n',
            "utf-8",
        )
        return launcher
    path.write_text(
        f'#!/usr/bin/env sh\nexec "{sys.executable}" "{implementation}" "$@"\n',
        "utf-8",
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path
