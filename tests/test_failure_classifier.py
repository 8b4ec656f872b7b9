from __future__ import annotations

import allure

from ralph_plus.runner.backend import BackendRunResult
from ralph_plus.runner.failure_classifier import (
    classify_attempt_failure,
    is_successful,
    spawn_failure,
)
from ralph_plus.runner.models import FailureClass, NormalizedResponse

pytestmark = [
    allure.epic("Task Runner"),
    allure.feature("Failure Classification"),
]


def _execution(*, exit_code: int = 0, timed_out: bool = False) -> BackendRunResult:
    return BackendRunResult(exit_code=exit_code, timed_out=timed_out, stdout="", stderr="")


def _classify(execution: BackendRunResult, response: NormalizedResponse):
    return classify_attempt_failure(
        execution=execution,
        response=response,
        timeout_seconds=600,
        max_turns=50,
    )


def test_success_requires_clean_exit_no_error_and_text() -> None:
    ok = NormalizedResponse(is_error=False, result="done")

    assert is_successful(_execution(), ok)
    assert not is_successful(_execution(exit_code=1), ok)
    assert not is_successful(_execution(timed_out=True, exit_code=124), ok)
    assert not is_successful(_execution(), NormalizedResponse(is_error=True, result="done"))
    assert not is_successful(_execution(), NormalizedResponse(is_error=False, result="\n  "))


def test_timeout_wins_over_every_other_signal() -> None:
    response = NormalizedResponse(is_error=True, subtype="error_max_turns")

    failure = _classify(_execution(exit_code=124, timed_out=True), response)

    assert failure.failure_class == FailureClass.TIMEOUT
    assert failure.raw_error == "TIMEOUT: Task exceeded 600s limit"


def test_max_turns_subtype() -> None:
    response = NormalizedResponse(is_error=True, subtype="error_max_turns", num_turns=50)

    failure = _classify(_execution(), response)

    assert failure.failure_class == FailureClass.MAX_TURNS
    assert failure.raw_error == (
        "MAX_TURNS: Engine hit max turns (50/50) without completing. Subtype: error_max_turns"
    )


def test_clean_exit_without_result_is_empty_result() -> None:
    failure = _classify(_execution(), NormalizedResponse(is_error=False, subtype="success"))

    assert failure.failure_class == FailureClass.EMPTY_RESULT
    assert failure.raw_error.startswith("EMPTY_RESULT:")
    assert "Output empty: yes" in failure.raw_error


def test_generic_reason_lists_every_signal() -> None:
    response = NormalizedResponse(is_error=True, result="oops", subtype="error_during_execution")

    failure = _classify(_execution(exit_code=2), response)

    assert failure.failure_class == FailureClass.GENERIC
    assert failure.raw_error == (
        "Exit code: 2 | is_error: true | subtype: error_during_execution | "
        "num_turns: 0 | Output empty: no"
    )


def test_spawn_failure_is_generic() -> None:
    failure = spawn_failure("Agent command not found: gemini")

    assert failure.failure_class == FailureClass.GENERIC
    assert failure.raw_error == "Backend failed to start: Agent command not found: gemini"
