"""Run directory layout and per-attempt diagnostic artifacts."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ralph_plus.runner.backend import BackendRunResult
from ralph_plus.runner.models import ErrorEntry, NormalizedResponse, Task, utc_now

logger = logging.getLogger(__name__)

RUN_DIR_NAME = "ralph++"
_FAILURE_RESULT_TAIL_CHARS = 3000


@dataclass(slots=True, frozen=True)
class RunWorkdir:
    """Deterministic layout next to the PRD file."""

    root_dir: Path

    @classmethod
    def for_prd(cls, prd_path: Path) -> RunWorkdir:
        return cls(root_dir=prd_path.resolve().parent / RUN_DIR_NAME)

    @property
    def logs_dir(self) -> Path:
        return self.root_dir / "logs"

    @property
    def archive_dir(self) -> Path:
        return self.root_dir / "archive"

    @property
    def last_branch_file(self) -> Path:
        return self.root_dir / ".last-branch"

    def state_file(self, project: str) -> Path:
        return self.root_dir / f".ralph-state-{project}.json"

    def ensure(self) -> None:
        self.logs_dir.mkdir(parents=True, exist_ok=True)


class AttemptArtifacts:
    """Write-only sink for prompt, response, result, failure log and diff."""

    def __init__(self, logs_dir: Path) -> None:
        self.logs_dir = logs_dir

    def attempt_path(self, task_id: str, attempt: int, suffix: str) -> Path:
        return self.logs_dir / task_id / f"attempt-{attempt}.{suffix}"

    def write_prompt(self, task_id: str, attempt: int, prompt: str) -> Path:
        return self._write(self.attempt_path(task_id, attempt, "prompt.md"), prompt)

    def write_response(self, task_id: str, attempt: int, execution: BackendRunResult) -> Path:
        return self._write(self.attempt_path(task_id, attempt, "out.json"), execution.stdout)

    def write_result(self, task_id: str, attempt: int, result: str) -> Path:
        return self._write(self.attempt_path(task_id, attempt, "result.txt"), result)

    def write_diff(self, task_id: str, attempt: int, diff: str) -> Path:
        return self._write(self.attempt_path(task_id, attempt, "diff"), diff)

    def write_failure_log(  # noqa: PLR0913
        self,
        *,
        task: Task,
        attempt: int,
        max_attempts: int,
        execution: BackendRunResult | None,
        response: NormalizedResponse,
        entry: ErrorEntry,
    ) -> Path:
        exit_code = execution.exit_code if execution is not None else entry.exit_code
        rule = "=" * 64
        text = (
            f"{rule}\n"
            f"FAILURE: {task.task_id} - {task.title}\n"
            f"Attempt: {attempt} / {max_attempts}\n"
            f"Timestamp: {entry.timestamp}\n"
            f"Failure class: {entry.failure_class.value}\n"
            f"{rule}\n"
            "\n"
            "-- Engine Response --\n"
            f"exit_code:   {exit_code}\n"
            f"is_error:    {str(response.is_error).lower()}\n"
            f"subtype:     {response.subtype}\n"
            f"num_turns:   {response.num_turns}\n"
            f"duration:    {entry.duration_sec}s\n"
            f"cost_usd:    {response.cost_usd}\n"
            f"tokens_in:   {response.input_tokens} (+ cache_read={response.cache_read_tokens}, "
            f"cache_create={response.cache_create_tokens})\n"
            f"tokens_out:  {response.output_tokens}\n"
            "\n"
            "-- Error --\n"
            f"{entry.raw_error}\n"
            "\n"
            "-- Diagnosis --\n"
            f"{entry.diagnosis}\n"
            "\n"
            f"-- Result (last {_FAILURE_RESULT_TAIL_CHARS} chars) --\n"
            f"{response.result[-_FAILURE_RESULT_TAIL_CHARS:]}\n"
        )
        if execution is not None and execution.stderr.strip():
            text += f"\n-- Stderr --\n{execution.stderr[-_FAILURE_RESULT_TAIL_CHARS:]}\n"
        return self._write(self.attempt_path(task.task_id, attempt, "failure.log"), text)

    def _write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text if text.endswith("\n") or not text else f"{text}\n", "utf-8")
        return path


def archive_if_branch_changed(
    workdir: RunWorkdir,
    *,
    branch: str,
    state_file: Path,
) -> Path | None:
    """Copy the previous run's state and logs aside when the PRD branch changed."""

    archive_folder: Path | None = None
    if workdir.last_branch_file.exists():
        last_branch = workdir.last_branch_file.read_text("utf-8").strip()
        if branch and last_branch and branch != last_branch:
            folder_name = last_branch.removeprefix("ralph/").replace("/", "-")
            archive_folder = workdir.archive_dir / f"{utc_now():%Y-%m-%d}-{folder_name}"
            logger.info("Archiving previous run %s to %s", last_branch, archive_folder)
            archive_folder.mkdir(parents=True, exist_ok=True)
            if state_file.exists():
                shutil.copy2(state_file, archive_folder / state_file.name)
            if workdir.logs_dir.exists():
                shutil.copytree(workdir.logs_dir, archive_folder / "logs", dirs_exist_ok=True)
    if branch:
        workdir.root_dir.mkdir(parents=True, exist_ok=True)
        workdir.last_branch_file.write_text(f"{branch}\n", "utf-8")
    return archive_folder
