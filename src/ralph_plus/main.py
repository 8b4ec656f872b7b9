"""CLI entrypoint for ralph-plus."""

import logging
from pathlib import Path

import rich_click as click

from ralph_plus import __version__
from ralph_plus.runner.backend import SUPPORTED_ENGINES
from ralph_plus.runner.controllers import RunCommand, RunnerCliController, StatusCommand
from ralph_plus.runner.errors import SetupError

click.rich_click.USE_MARKDOWN = True
RUNNER_CONTROLLER = RunnerCliController()

SETUP_ERROR_EXIT_CODE = 2


class SetupFailed(click.ClickException):
    """Fatal configuration or environment problem reported before any task runs."""

    exit_code = SETUP_ERROR_EXIT_CODE


class TasksFailed(click.ClickException):
    """At least one task failed or the queue was left incomplete."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@click.group()
@click.version_option(version=__version__, prog_name="ralph-plus")
def ralph_plus() -> None:
    """Run PRD user stories through Claude Code, Gemini CLI or Codex CLI with retries.

    Progress is kept in `ralph++/.ralph-state-<project>.json` next to the PRD,
    so an interrupted run can continue with `--resume`.
    """


@ralph_plus.command("run")
@click.option(
    "--prd",
    "prd_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("prd.json"),
    show_default=True,
    help="PRD file, `.json` or `.md` (converted through the selected engine).",
)
@click.option("--resume", is_flag=True, default=False, help="Continue from the existing state file.")
@click.option("--dry-run", is_flag=True, default=False, help="Write prompts without running agents.")
@click.option(
    "--engine",
    type=click.Choice(SUPPORTED_ENGINES, case_sensitive=False),
    default=None,
    help="Agent backend. Default: `RALPH_ENGINE` or claude.",
)
@click.option(
    "--retries",
    "max_retries",
    type=click.IntRange(min=1),
    default=None,
    help="Max attempts per story. Default: `RALPH_MAX_RETRIES` or 10.",
)
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Per-attempt timeout in seconds. Default: `RALPH_TIMEOUT` or 600.",
)
@click.option(
    "--max-turns",
    type=click.IntRange(min=1),
    default=None,
    help="Agent turn budget per attempt. Default: `RALPH_MAX_TURNS` or 50.",
)
@click.option("--codex-model", default=None, help="Model passed to `codex exec -m`.")
@click.option("--cost", "show_cost", is_flag=True, default=False, help="Show cost columns.")
@click.option(
    "--diag-learn",
    is_flag=True,
    default=False,
    help="Feed the previous attempt's git diff and an agent diagnosis into retries.",
)
@click.option("--verbose", is_flag=True, default=False, help="Debug logging.")
def run(  # noqa: PLR0913
    prd_path: Path,
    resume: bool,
    dry_run: bool,
    engine: str | None,
    max_retries: int | None,
    timeout_seconds: int | None,
    max_turns: int | None,
    codex_model: str | None,
    show_cost: bool,
    diag_learn: bool,
    verbose: bool,
) -> None:
    """Execute pending user stories in priority order."""

    _configure_logging(verbose=verbose)
    try:
        result = RUNNER_CONTROLLER.run(
            RunCommand(
                prd_path=prd_path,
                resume=resume,
                dry_run=dry_run,
                engine=engine.lower() if engine else None,
                max_retries=max_retries,
                timeout_seconds=timeout_seconds,
                max_turns=max_turns,
                codex_model=codex_model,
                show_cost=show_cost,
                diag_learn=diag_learn,
            ),
        )
    except SetupError as error:
        raise SetupFailed(str(error)) from error
    _emit_lines(result.lines)
    if result.exit_code != 0:
        raise TasksFailed("Run ended with failed or incomplete stories.", exit_code=result.exit_code)


@ralph_plus.command("status")
@click.option(
    "--prd",
    "prd_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("prd.json"),
    show_default=True,
    help="PRD JSON file.",
)
@click.option("--cost", "show_cost", is_flag=True, default=False, help="Show cost column.")
def status(prd_path: Path, show_cost: bool) -> None:
    """Show per-story progress recorded by previous runs."""

    try:
        lines = RUNNER_CONTROLLER.status(StatusCommand(prd_path=prd_path, show_cost=show_cost))
    except SetupError as error:
        raise SetupFailed(str(error)) from error
    _emit_lines(lines)


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph_plus()
