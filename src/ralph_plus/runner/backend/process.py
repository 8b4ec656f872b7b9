"""Subprocess runner with an externally enforced deadline."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import time
from pathlib import Path

from ralph_plus.runner.backend.base import TIMEOUT_EXIT_CODE, BackendRunError, BackendRunResult

logger = logging.getLogger(__name__)

AUXILIARY_TIMEOUT_SECONDS = 120
_POLL_INTERVAL_SECONDS = 0.1
_TERMINATE_GRACE_SECONDS = 2


def run_with_deadline(
    run_args: list[str],
    *,
    timeout_seconds: float,
    cwd: Path | None = None,
) -> BackendRunResult:
    """Run ``run_args`` and kill its whole process tree at the deadline.

    The child is started in a new session so that helper processes it spawns
    share its process group and are terminated together with it. Output is
    captured as bytes and decoded leniently, since a kill can cut a multi-byte
    character in half.
    """

    with (
        tempfile.TemporaryFile("w+b") as stdout_handle,
        tempfile.TemporaryFile("w+b") as stderr_handle,
    ):
        try:
            process = subprocess.Popen(  # noqa: S603
                run_args,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                start_new_session=os.name != "nt",
            )
        except FileNotFoundError as error:
            raise BackendRunError(f"Agent command not found: {run_args[0]}") from error
        except OSError as error:
            raise BackendRunError(f"Agent command failed to start: {error}") from error

        start_monotonic = time.monotonic()
        timed_out = False
        while True:
            returncode = process.poll()
            if returncode is not None:
                break
            if time.monotonic() - start_monotonic >= timeout_seconds:
                logger.debug("Deadline of %ss reached for %s", timeout_seconds, run_args[0])
                _terminate_process_tree(process)
                timed_out = True
                break
            time.sleep(_POLL_INTERVAL_SECONDS)

        stdout_handle.seek(0)
        stderr_handle.seek(0)
        return BackendRunResult(
            exit_code=TIMEOUT_EXIT_CODE if timed_out else int(returncode),
            timed_out=timed_out,
            stdout=_decode(stdout_handle.read()),
            stderr=_decode(stderr_handle.read()),
        )


def run_auxiliary(run_args: list[str], *, cwd: Path | None = None) -> str:
    """Run a short plain-text agent call, raising on timeout or non-zero exit."""

    result = run_with_deadline(run_args, timeout_seconds=AUXILIARY_TIMEOUT_SECONDS, cwd=cwd)
    if result.timed_out:
        raise BackendRunError(
            f"{run_args[0]} timed out after {AUXILIARY_TIMEOUT_SECONDS}s",
            exit_code=result.exit_code,
        )
    if result.exit_code != 0:
        raise BackendRunError(
            f"{run_args[0]} exited with code {result.exit_code}",
            exit_code=result.exit_code,
        )
    return result.stdout


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _terminate_process_tree(process: subprocess.Popen[bytes]) -> None:
    if os.name == "nt":
        _terminate_process(process)
        return
    try:
        pgid = os.getpgid(process.pid)
    except ProcessLookupError:
        return
    try:
        os.killpg(pgid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        pass
    # Helpers may ignore SIGTERM or outlive the leader; the group always gets SIGKILL.
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    if process.returncode is None:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
