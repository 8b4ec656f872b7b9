"""Prompt templates sent to agent backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ralph_plus.runner.models import Task

if TYPE_CHECKING:
    from ralph_plus.runner.diagnosis import RetryContext


def format_criteria(task: Task) -> str:
    return "\n".join(
        f"{index}. {criterion}" for index, criterion in enumerate(task.acceptance_criteria, 1)
    )


def build_task_prompt(task: Task) -> str:
    """Base prompt for every attempt of ``task``."""

    return (
        f"# Task: {task.title}\n"
        "\n"
        "## Description\n"
        f"{task.description}\n"
        "\n"
        "## Acceptance Criteria\n"
        f"{format_criteria(task)}\n"
        "\n"
        "## Instructions\n"
        "Complete this task. Work through each acceptance criterion methodically.\n"
        "After implementing, verify ALL acceptance criteria are met before finishing.\n"
        "If any criterion requires running tests or type checks, do so and fix any failures.\n"
        "Do not skip any criterion. Every one must pass.\n"
    )


def build_attempt_prompt(
    task: Task,
    *,
    attempt: int,
    max_attempts: int,
    context: RetryContext | None,
) -> str:
    """Base prompt plus the retry block of the previous failed attempt."""

    base_prompt = build_task_prompt(task)
    if attempt <= 1 or context is None:
        return base_prompt
    return f"{base_prompt}\n{render_retry_block(context, attempt, max_attempts)}"


def render_retry_block(context: RetryContext, attempt: int, max_attempts: int) -> str:
    header = f"## RETRY CONTEXT (Attempt {attempt} of {max_attempts})\n\n"
    if not context.is_learning:
        return (
            f"{header}"
            "The previous attempt failed with:\n"
            f"{context.reason}\n"
            "\n"
            "Now complete the task using a corrected approach.\n"
        )

    sections = [
        header.rstrip("\n"),
        "",
        "The previous attempt failed. Below is why it failed and what it changed.",
        "Understand what was tried so you take a DIFFERENT approach.",
        "",
        "### Failure Reason",
        context.reason,
    ]
    if context.diagnosis:
        sections.extend(["", "### Diagnosis", context.diagnosis.strip()])
    if context.diff:
        sections.extend(
            [
                "",
                "### Changes Made in Previous Attempt (git diff)",
                "```diff",
                context.diff,
                "```",
            ],
        )
    sections.extend(
        [
            "",
            "Now complete the task. Fix what the previous attempt got wrong. "
            "Do NOT repeat the same mistakes.",
        ],
    )
    return "\n".join(sections) + "\n"


def build_diagnosis_prompt(
    task: Task,
    *,
    raw_error: str,
    agent_output: str,
    tail_chars: int,
) -> str:
    """Auxiliary prompt asking the agent why the attempt failed."""

    criteria = "\n".join(task.acceptance_criteria)
    return (
        "You are a debugging assistant. A coding task was attempted by an AI agent "
        "and it failed.\n"
        "\n"
        f"TASK TITLE: {task.title}\n"
        "\n"
        "TASK DESCRIPTION:\n"
        f"{task.description}\n"
        "\n"
        "ACCEPTANCE CRITERIA:\n"
        f"{criteria}\n"
        "\n"
        f"RAW ERROR OUTPUT (last {tail_chars} chars):\n"
        f"{raw_error[-tail_chars:]}\n"
        "\n"
        f"AGENT'S OUTPUT (last {tail_chars} chars):\n"
        f"{agent_output[-tail_chars:]}\n"
        "\n"
        "Provide a concise, actionable diagnosis (max 10 lines):\n"
        "1. Root cause: what specifically went wrong\n"
        "2. Which acceptance criteria were NOT met and why\n"
        "3. What approach should be AVOIDED on the next attempt\n"
        "4. What specific alternative approach should be tried\n"
        "\n"
        "Be concrete. Reference specific files, functions, or commands.\n"
    )
