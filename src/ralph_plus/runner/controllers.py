"""Controllers for runner CLI commands."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from ralph_plus.config import RunnerSettings, SettingsOverrides, resolve_settings
from ralph_plus.runner.backend import AgentBackend, get_backend
from ralph_plus.runner.controller import RetryController
from ralph_plus.runner.diagnosis import DiagnosisBuilder, GitWorkspace
from ralph_plus.runner.errors import SetupError
from ralph_plus.runner.orchestrator import Orchestrator, order_tasks
from ralph_plus.runner.prd import PrdDocument, prepare_prd
from ralph_plus.runner.report import render_status_lines, render_summary_lines
from ralph_plus.runner.state_store import StateStore
from ralph_plus.runner.workdir import AttemptArtifacts, RunWorkdir, archive_if_branch_changed

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunCommand:
    """CLI input for one run over a PRD."""

    prd_path: Path
    resume: bool = False
    dry_run: bool = False
    engine: str | None = None
    max_retries: int | None = None
    timeout_seconds: int | None = None
    max_turns: int | None = None
    codex_model: str | None = None
    show_cost: bool = False
    diag_learn: bool = False


@dataclass(slots=True)
class StatusCommand:
    """CLI input for the status table of a previous run."""

    prd_path: Path
    show_cost: bool = False


@dataclass(slots=True)
class RunResult:
    """Run report to render in CLI."""

    lines: list[str]
    exit_code: int


class RunnerCliController:
    """Wire settings, PRD, state store, backend and orchestrator for CLI commands."""

    def run(self, command: RunCommand) -> RunResult:
        base = RunnerSettings.from_env()
        overrides = _overrides(command)

        prd_path = command.prd_path
        if prd_path.suffix.lower() == ".md":
            conversion_settings = resolve_settings(overrides=overrides, base=base)
            prd_path = prepare_prd(
                prd_path,
                backend=get_backend(conversion_settings, cwd=prd_path.resolve().parent),
                prompt_path=conversion_settings.convert_prompt_path,
            )

        document = PrdDocument.load(prd_path)
        settings = resolve_settings(
            overrides=overrides,
            document_config=document.config,
            base=base,
        )
        backend = get_backend(settings)
        warnings = preflight(
            settings,
            backend,
            max_turns_requested=command.max_turns is not None or "maxTurns" in document.config,
        )

        workdir = RunWorkdir.for_prd(prd_path)
        workdir.ensure()
        state_file = workdir.state_file(document.state_name)
        archived = archive_if_branch_changed(workdir, branch=document.branch, state_file=state_file)

        tasks = order_tasks(document.tasks())
        store = StateStore(state_file, project=document.project)
        controller = RetryController(
            settings=settings,
            backend=backend,
            store=store,
            task_source=document,
            artifacts=AttemptArtifacts(workdir.logs_dir),
            diagnosis=DiagnosisBuilder(
                backend=backend,
                learning=settings.diag_learn,
                workspace=GitWorkspace(),
                diff_line_limit=settings.diff_line_limit,
                tail_chars=settings.diagnosis_tail_chars,
            ),
        )
        logger.info(
            "Project %s: %d stories, engine=%s, retries=%d, timeout=%ds, max_turns=%d",
            document.project,
            len(tasks),
            settings.engine,
            settings.max_retries,
            settings.timeout_seconds,
            settings.max_turns,
        )
        summary = Orchestrator(
            store=store,
            controller=controller,
            resume=settings.resume,
            dry_run=settings.dry_run,
        ).run(tasks)

        lines = [f"Warning: {warning}" for warning in warnings]
        if archived is not None:
            lines.append(f"Archived previous run to {archived}")
        lines.extend(
            render_status_lines(
                tasks=tasks,
                run_state=store.run_state,
                show_cost=settings.show_cost,
            ),
        )
        lines.append("")
        lines.extend(
            render_summary_lines(
                summary=summary,
                show_cost=settings.show_cost,
                logs_dir=str(workdir.logs_dir),
                prd_path=str(command.prd_path),
            ),
        )
        return RunResult(lines=lines, exit_code=summary.exit_code)

    def status(self, command: StatusCommand) -> list[str]:
        """Render the status table from the state file next to the PRD."""

        document = PrdDocument.load(command.prd_path)
        workdir = RunWorkdir.for_prd(command.prd_path)
        state_file = workdir.state_file(document.state_name)
        tasks = order_tasks(document.tasks())
        if not state_file.exists():
            return [
                f"No state file for project {document.project} ({state_file}).",
                *render_status_lines(tasks=tasks, run_state=None, show_cost=command.show_cost),
            ]
        run_state = StateStore(state_file, project=document.project).load_existing()
        lines = [
            f"Project: {run_state.project}",
            f"Started: {run_state.started_at}",
            f"Finished: {run_state.finished_at or '-'}",
            "",
        ]
        lines.extend(
            render_status_lines(tasks=tasks, run_state=run_state, show_cost=command.show_cost),
        )
        return lines


def preflight(
    settings: RunnerSettings,
    backend: AgentBackend,
    *,
    max_turns_requested: bool = False,
) -> list[str]:
    """Fail fast on missing executables; return non-fatal feature-gap warnings."""

    if shutil.which(backend.executable) is None:
        raise SetupError(f"{backend.display_name} CLI not found: {backend.executable}")
    if settings.diag_learn and shutil.which("git") is None:
        raise SetupError("git is required for --diag-learn.")

    warnings: list[str] = []
    if settings.engine == "gemini":
        if max_turns_requested:
            warnings.append("Gemini CLI has no max-turns option; --max-turns is ignored.")
        if settings.show_cost:
            warnings.append("Gemini CLI does not report cost; costs will show as $0.")
    if settings.engine == "codex" and settings.show_cost:
        warnings.append("Codex CLI does not report cost; costs will show as $0.")
    for warning in warnings:
        logger.warning(warning)
    return warnings


def _overrides(command: RunCommand) -> SettingsOverrides:
    return SettingsOverrides(
        engine=command.engine,
        max_retries=command.max_retries,
        timeout_seconds=command.timeout_seconds,
        max_turns=command.max_turns,
        codex_model=command.codex_model,
        diag_learn=True if command.diag_learn else None,
        show_cost=True if command.show_cost else None,
        dry_run=True if command.dry_run else None,
        resume=True if command.resume else None,
    )
