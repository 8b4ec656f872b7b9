"""Deterministic classification of one attempt's outcome."""

from __future__ import annotations

from dataclasses import dataclass

from ralph_plus.runner.backend import BackendRunResult
from ralph_plus.runner.models import FailureClass, NormalizedResponse

MAX_TURNS_SUBTYPE = "error_max_turns"


@dataclass(slots=True, frozen=True)
class AttemptFailure:
    """Failure class plus the raw reason carried into the next prompt."""

    failure_class: FailureClass
    raw_error: str


def is_successful(execution: BackendRunResult, response: NormalizedResponse) -> bool:
    """Clean exit, no error flag and a non-empty result.

    A clean exit with an empty result is a failure: backends that only
    signal success implicitly would otherwise pass without doing anything.
    """

    return (
        not execution.timed_out
        and execution.exit_code == 0
        and not response.is_error
        and bool(response.result.strip())
    )


def classify_attempt_failure(
    *,
    execution: BackendRunResult,
    response: NormalizedResponse,
    timeout_seconds: int,
    max_turns: int,
) -> AttemptFailure:
    """Classify a non-successful attempt: timeout, max turns, empty result, generic."""

    if execution.timed_out:
        return AttemptFailure(
            failure_class=FailureClass.TIMEOUT,
            raw_error=f"TIMEOUT: Task exceeded {timeout_seconds}s limit",
        )

    if response.subtype == MAX_TURNS_SUBTYPE:
        return AttemptFailure(
            failure_class=FailureClass.MAX_TURNS,
            raw_error=(
                f"MAX_TURNS: Engine hit max turns ({response.num_turns}/{max_turns}) "
                f"without completing. Subtype: {response.subtype}"
            ),
        )

    details = _generic_details(execution=execution, response=response)
    if execution.exit_code == 0 and not response.is_error and not response.result.strip():
        return AttemptFailure(
            failure_class=FailureClass.EMPTY_RESULT,
            raw_error=f"EMPTY_RESULT: Engine exited cleanly without a result | {details}",
        )
    return AttemptFailure(failure_class=FailureClass.GENERIC, raw_error=details)


def spawn_failure(message: str) -> AttemptFailure:
    """Failure of an attempt whose agent process never started."""

    return AttemptFailure(
        failure_class=FailureClass.GENERIC,
        raw_error=f"Backend failed to start: {message}",
    )


def _generic_details(*, execution: BackendRunResult, response: NormalizedResponse) -> str:
    output_empty = "yes" if not response.result.strip() else "no"
    return (
        f"Exit code: {execution.exit_code} | is_error: {str(response.is_error).lower()} | "
        f"subtype: {response.subtype} | num_turns: {response.num_turns} | "
        f"Output empty: {output_empty}"
    )
