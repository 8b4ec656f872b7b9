"""Retry context built from a failed attempt."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ralph_plus.runner.backend import AgentBackend, BackendRunError
from ralph_plus.runner.models import Task
from ralph_plus.runner.prompts import build_diagnosis_prompt

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 60


@dataclass(slots=True, frozen=True)
class RetryContext:
    """What the next attempt learns about the previous one."""

    reason: str
    diff: str = ""
    diagnosis: str = ""
    is_learning: bool = False


@dataclass(slots=True, frozen=True)
class FailureDiagnosis:
    """Retry context plus the raw diff kept for the attempt artifacts."""

    context: RetryContext
    full_diff: str = ""


def bound_diff(diff: str, *, limit: int) -> str:
    """Keep the first ``limit`` lines and state how many were dropped."""

    lines = diff.splitlines()
    if len(lines) <= limit:
        return diff
    head = "\n".join(lines[:limit])
    return f"{head}\n... [truncated: showing {limit} of {len(lines)} lines]"


class GitWorkspace:
    """Revision and diff lookups in the working tree under modification."""

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def current_revision(self) -> str:
        return self._git("rev-parse", "HEAD").strip()

    def diff_since(self, revision: str) -> str:
        return self._git("diff", revision)

    def _git(self, *args: str) -> str:
        try:
            completed = subprocess.run(  # noqa: S603
                ["git", *args],  # noqa: S607
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=_GIT_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as error:
            logger.warning("git %s failed: %s", args[0], error)
            return ""
        if completed.returncode != 0:
            logger.debug("git %s exited %d: %s", args[0], completed.returncode, completed.stderr)
            return ""
        return completed.stdout


class DiagnosisBuilder:
    """Plain mode forwards the failure reason; learning mode adds diff and diagnosis."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: AgentBackend,
        learning: bool,
        workspace: GitWorkspace | None = None,
        diff_line_limit: int = 200,
        tail_chars: int = 2000,
    ) -> None:
        self.backend = backend
        self.learning = learning
        self.workspace = workspace if workspace is not None else GitWorkspace()
        self.diff_line_limit = diff_line_limit
        self.tail_chars = tail_chars

    def record_revision(self) -> str:
        """Revision to diff against after the attempt; empty outside learning mode."""

        if not self.learning:
            return ""
        return self.workspace.current_revision()

    def build(
        self,
        *,
        task: Task,
        raw_error: str,
        agent_output: str,
        revision: str,
    ) -> FailureDiagnosis:
        if not self.learning:
            return FailureDiagnosis(context=RetryContext(reason=raw_error))

        full_diff = self.workspace.diff_since(revision) if revision else ""
        diagnosis = self._diagnose(task=task, raw_error=raw_error, agent_output=agent_output)
        return FailureDiagnosis(
            context=RetryContext(
                reason=raw_error,
                diff=bound_diff(full_diff, limit=self.diff_line_limit) if full_diff else "",
                diagnosis=diagnosis,
                is_learning=True,
            ),
            full_diff=full_diff,
        )

    def _diagnose(self, *, task: Task, raw_error: str, agent_output: str) -> str:
        logger.info("Analyzing failure of %s for retry guidance", task.task_id)
        prompt = build_diagnosis_prompt(
            task,
            raw_error=raw_error,
            agent_output=agent_output,
            tail_chars=self.tail_chars,
        )
        try:
            diagnosis = self.backend.diagnose_once(prompt).strip()
        except BackendRunError as error:
            logger.warning("Diagnosis call failed for %s: %s", task.task_id, error)
            exit_label = error.exit_code if error.exit_code is not None else "n/a"
            return f"[Analysis unavailable: exit {exit_label}]"
        for line in diagnosis.splitlines()[:10]:
            logger.info("  | %s", line)
        return diagnosis
