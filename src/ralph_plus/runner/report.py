"""Plain-text status table and run summary for CLI output."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from ralph_plus.runner.models import RunState, Task, TaskState

if TYPE_CHECKING:
    from ralph_plus.runner.orchestrator import RunSummary

_TITLE_WIDTH = 36


def fmt_duration(seconds: int) -> str:
    """Render whole seconds as ``45s``, ``3m 12s`` or ``1h 5m``."""

    if seconds < 60:  # noqa: PLR2004
        return f"{seconds}s"
    if seconds < 3600:  # noqa: PLR2004
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {seconds % 3600 // 60}m"


def fmt_tokens(count: int) -> str:
    if count >= 1_000_000:  # noqa: PLR2004
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:  # noqa: PLR2004
        return f"{count / 1_000:.1f}k"
    return str(count)


def render_status_lines(
    *,
    tasks: Sequence[Task],
    run_state: RunState | None,
    show_cost: bool,
) -> list[str]:
    """One row per task in priority order, state read from ``run_state``."""

    header = f"{'PRI':<6} {'ID':<10} {'TITLE':<{_TITLE_WIDTH}} {'STATUS':<9} {'TRY':<4} "
    header += f"{'DURATION':<9} {'IN TOK':<8} {'OUT TOK':<8}"
    if show_cost:
        header += " COST"
    lines = [header, "-" * len(header)]
    for task in tasks:
        state = _state_for(run_state, task.task_id)
        title = task.title
        if len(title) > _TITLE_WIDTH:
            title = f"{title[: _TITLE_WIDTH - 3]}..."
        row = (
            f"{f'[{task.priority}]':<6} {task.task_id:<10} {title:<{_TITLE_WIDTH}} "
            f"{state.status.value:<9} {state.attempt:<4} "
            f"{fmt_duration(state.duration_sec):<9} "
            f"{fmt_tokens(state.input_tokens):<8} {fmt_tokens(state.output_tokens):<8}"
        )
        if show_cost:
            row += f" ${state.total_cost:.3f}"
        lines.append(row.rstrip())
    return lines


def render_summary_lines(
    *,
    summary: RunSummary,
    show_cost: bool,
    logs_dir: str,
    prd_path: str,
) -> list[str]:
    lines = [
        "Run complete",
        f"Passed: {summary.passed}/{summary.total}",
        f"Failed: {summary.failed}",
        f"Duration: {fmt_duration(summary.duration_sec)}",
        f"Input tok: {fmt_tokens(summary.input_tokens)}",
        f"Output tok: {fmt_tokens(summary.output_tokens)}",
    ]
    if show_cost:
        lines.append(f"Cost: ${summary.total_cost:.4f}")
    if summary.dry_run:
        lines.append(f"Dry run: {summary.prepared} prompt(s) written under {logs_dir}")
    elif summary.failed:
        lines.append(f"Some stories failed. Logs at: {logs_dir}")
        lines.append(f"To retry failed stories: ralph-plus run --prd {prd_path} --resume")
    elif summary.passed == summary.total:
        lines.append("All user stories completed.")
    else:
        lines.append("Run ended with incomplete stories. Use --resume to continue.")
    return lines


def _state_for(run_state: RunState | None, task_id: str) -> TaskState:
    if run_state is None:
        return TaskState()
    return run_state.task_states.get(task_id) or TaskState()
