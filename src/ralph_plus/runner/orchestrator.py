"""Sequential driver over the priority-ordered task queue."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

from ralph_plus.runner.controller import RetryController
from ralph_plus.runner.models import Task, TaskOutcome, TaskStatus
from ralph_plus.runner.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunSummary:
    """Aggregate run counters for CLI reporting."""

    total: int = 0
    already_passed: int = 0
    succeeded: int = 0
    failed: int = 0
    prepared: int = 0
    dry_run: bool = False
    duration_sec: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost: float = 0.0

    @property
    def passed(self) -> int:
        return self.already_passed + self.succeeded

    @property
    def exit_code(self) -> int:
        """0 when nothing failed and the whole queue is accounted for, else 1."""

        if self.failed:
            return 1
        if self.dry_run:
            return 0
        return 0 if self.passed == self.total else 1


def order_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Ascending priority; ties keep their document order."""

    return sorted(tasks, key=lambda task: task.priority)


class Orchestrator:
    """Run every not-yet-passed task through the retry controller, one at a time."""

    def __init__(
        self,
        *,
        store: StateStore,
        controller: RetryController,
        resume: bool,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.controller = controller
        self.resume = resume
        self.dry_run = dry_run

    def run(self, tasks: Iterable[Task]) -> RunSummary:
        ordered = order_tasks(tasks)
        started = time.monotonic()
        self.store.initialize(ordered, resume=self.resume)

        summary = RunSummary(total=len(ordered), dry_run=self.dry_run)
        pending: list[Task] = []
        for task in ordered:
            if self.store.get_field(task.task_id, "status") == TaskStatus.SUCCESS:
                summary.already_passed += 1
            else:
                pending.append(task)
        if summary.already_passed:
            logger.info("%d stories already passing, skipping them", summary.already_passed)

        for task in pending:
            outcome = self.controller.run_task(task)
            if outcome == TaskOutcome.SUCCESS:
                summary.succeeded += 1
            elif outcome == TaskOutcome.DRY_RUN:
                summary.prepared += 1
            else:
                summary.failed += 1

        if not self.dry_run:
            self.store.finalize()
        summary.duration_sec = int(time.monotonic() - started)
        for task_state in self.store.run_state.task_states.values():
            summary.input_tokens += task_state.input_tokens
            summary.output_tokens += task_state.output_tokens
            summary.total_cost += task_state.total_cost
        logger.info(
            "Run finished: passed=%d failed=%d prepared=%d total=%d",
            summary.passed,
            summary.failed,
            summary.prepared,
            summary.total,
        )
        return summary
