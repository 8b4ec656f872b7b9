"""Per-task retry state machine."""

from __future__ import annotations

import logging
import time
from typing import Protocol

from ralph_plus.config import RunnerSettings
from ralph_plus.runner.backend import AgentBackend, BackendRunError, BackendRunResult
from ralph_plus.runner.diagnosis import DiagnosisBuilder, RetryContext
from ralph_plus.runner.failure_classifier import (
    AttemptFailure,
    classify_attempt_failure,
    is_successful,
    spawn_failure,
)
from ralph_plus.runner.models import (
    ErrorEntry,
    NormalizedResponse,
    Task,
    TaskOutcome,
    TaskStatus,
    iso_now,
)
from ralph_plus.runner.prompts import build_attempt_prompt
from ralph_plus.runner.report import fmt_duration
from ralph_plus.runner.state_store import StateStore
from ralph_plus.runner.workdir import AttemptArtifacts

logger = logging.getLogger(__name__)

_NOTE_LIMIT = 200


class TaskSource(Protocol):
    """Document the pass flag and note of each task are written back to."""

    def report(self, task_id: str, passed: bool, note: str) -> None:
        """Persist the pass flag and note of one task."""


class RetryController:
    """Drive one task through attempts until success or the retry budget runs out."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: RunnerSettings,
        backend: AgentBackend,
        store: StateStore,
        task_source: TaskSource,
        artifacts: AttemptArtifacts,
        diagnosis: DiagnosisBuilder,
    ) -> None:
        self.settings = settings
        self.backend = backend
        self.store = store
        self.task_source = task_source
        self.artifacts = artifacts
        self.diagnosis = diagnosis

    def run_task(self, task: Task) -> TaskOutcome:
        max_attempts = self.settings.max_retries
        context = self._resumed_context(task.task_id)

        if self.settings.dry_run:
            return self._prepare_dry_run(task, context=context)

        attempt = int(self.store.get_field(task.task_id, "attempt"))
        while attempt < max_attempts:
            attempt += 1
            self.store.set_field(task.task_id, "attempt", attempt)
            self.store.set_field(task.task_id, "status", TaskStatus.RUNNING)
            self.store.set_field(task.task_id, "started_at", iso_now())
            logger.info(
                "[%s] attempt %d/%d via %s",
                task.task_id,
                attempt,
                max_attempts,
                self.backend.display_name,
            )

            prompt = build_attempt_prompt(
                task,
                attempt=attempt,
                max_attempts=max_attempts,
                context=context,
            )
            self.artifacts.write_prompt(task.task_id, attempt, prompt)
            revision = self.diagnosis.record_revision()

            started = time.monotonic()
            execution, response, failure = self._execute(prompt)
            elapsed = int(time.monotonic() - started)
            self._accumulate(task.task_id, elapsed=elapsed, response=response)

            if execution is not None:
                self.artifacts.write_response(task.task_id, attempt, execution)
                self.artifacts.write_result(task.task_id, attempt, response.result)

            if failure is None and execution is not None and is_successful(execution, response):
                self.store.set_field(task.task_id, "status", TaskStatus.SUCCESS)
                self.store.set_field(task.task_id, "finished_at", iso_now())
                duration = fmt_duration(elapsed)
                note = f"Completed by Ralph (attempt {attempt}, {duration})"
                self.task_source.report(task.task_id, True, note)
                logger.info("[%s] passed on attempt %d in %s", task.task_id, attempt, duration)
                return TaskOutcome.SUCCESS

            if failure is None:
                if execution is None:
                    raise RuntimeError("Attempt without execution must carry a failure.")
                failure = classify_attempt_failure(
                    execution=execution,
                    response=response,
                    timeout_seconds=self.settings.timeout_seconds,
                    max_turns=self.settings.max_turns,
                )
            context = self._record_failure(
                task,
                attempt=attempt,
                elapsed=elapsed,
                execution=execution,
                response=response,
                failure=failure,
                revision=revision,
            )

        self.store.set_field(task.task_id, "status", TaskStatus.FAILED)
        self.store.set_field(task.task_id, "finished_at", iso_now())
        self.task_source.report(task.task_id, False, f"FAILED after {max_attempts} attempts")
        logger.error("[%s] failed after %d attempts", task.task_id, max_attempts)
        return TaskOutcome.FAILED

    def _prepare_dry_run(self, task: Task, *, context: RetryContext | None) -> TaskOutcome:
        attempt = int(self.store.get_field(task.task_id, "attempt")) + 1
        prompt = build_attempt_prompt(
            task,
            attempt=attempt,
            max_attempts=self.settings.max_retries,
            context=context,
        )
        path = self.artifacts.write_prompt(task.task_id, attempt, prompt)
        logger.info("[%s] dry run, prompt written to %s", task.task_id, path)
        return TaskOutcome.DRY_RUN

    def _execute(
        self,
        prompt: str,
    ) -> tuple[BackendRunResult | None, NormalizedResponse, AttemptFailure | None]:
        try:
            execution = self.backend.execute(prompt, self.settings.timeout_seconds)
        except BackendRunError as error:
            logger.warning("%s failed to start: %s", self.backend.display_name, error)
            return None, NormalizedResponse(is_error=True), spawn_failure(str(error))
        return execution, self.backend.parse(execution.stdout), None

    def _accumulate(self, task_id: str, *, elapsed: int, response: NormalizedResponse) -> None:
        current = self.store.task_state(task_id)
        self.store.set_field(task_id, "duration_sec", current.duration_sec + max(elapsed, 0))
        self.store.set_field(task_id, "total_cost", current.total_cost + max(response.cost_usd, 0.0))
        self.store.set_field(
            task_id,
            "input_tokens",
            current.input_tokens + max(response.billed_input_tokens, 0),
        )
        self.store.set_field(
            task_id,
            "output_tokens",
            current.output_tokens + max(response.output_tokens, 0),
        )

    def _record_failure(  # noqa: PLR0913
        self,
        task: Task,
        *,
        attempt: int,
        elapsed: int,
        execution: BackendRunResult | None,
        response: NormalizedResponse,
        failure: AttemptFailure,
        revision: str,
    ) -> RetryContext:
        logger.warning("[%s] attempt %d failed: %s", task.task_id, attempt, failure.raw_error)
        diagnosis = self.diagnosis.build(
            task=task,
            raw_error=failure.raw_error,
            agent_output=response.result or (execution.stderr if execution else ""),
            revision=revision,
        )
        entry = ErrorEntry(
            timestamp=iso_now(),
            exit_code=execution.exit_code if execution is not None else -1,
            failure_class=failure.failure_class,
            duration_sec=elapsed,
            raw_error=failure.raw_error,
            diagnosis=diagnosis.context.diagnosis,
        )
        self.store.append_error(task.task_id, entry)
        self.artifacts.write_failure_log(
            task=task,
            attempt=attempt,
            max_attempts=self.settings.max_retries,
            execution=execution,
            response=response,
            entry=entry,
        )
        if diagnosis.full_diff:
            self.artifacts.write_diff(task.task_id, attempt, diagnosis.full_diff)

        summary = _first_line(diagnosis.context.diagnosis) or _first_line(failure.raw_error)
        self.task_source.report(
            task.task_id,
            False,
            f"Failed attempt {attempt}: {summary[:_NOTE_LIMIT]}",
        )
        return diagnosis.context

    def _resumed_context(self, task_id: str) -> RetryContext | None:
        """Context of the last recorded failure, so a resumed retry is not blind."""

        errors = self.store.get_field(task_id, "errors")
        if not errors:
            return None
        last = errors[-1]
        return RetryContext(
            reason=last.raw_error,
            diagnosis=last.diagnosis,
            is_learning=self.diagnosis.learning,
        )


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""
