from __future__ import annotations

import sys
import time
from pathlib import Path

import allure
import pytest

from ralph_plus.runner.backend import BackendRunError
from ralph_plus.runner.backend.process import run_auxiliary, run_with_deadline

pytestmark = [
    allure.epic("Agent Backends"),
    allure.feature("Process Deadline"),
]


def test_captures_stdout_stderr_and_exit_code() -> None:
    result = run_with_deadline(
        [
            sys.executable,
            "-c",
            "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)",
        ],
        timeout_seconds=30,
    )

    assert result.exit_code == 3
    assert result.timed_out is False
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_deadline_kills_hung_process_and_reports_timeout() -> None:
    started = time.monotonic()

    result = run_with_deadline(
        [sys.executable, "-c", "import time; print('started', flush=True); time.sleep(60)"],
        timeout_seconds=1,
    )

    assert result.timed_out is True
    assert result.exit_code == 124
    assert "started" in result.stdout
    assert time.monotonic() - started < 20


def test_missing_executable_raises_backend_run_error(tmp_path) -> None:
    with pytest.raises(BackendRunError, match="not found"):
        run_with_deadline([str(tmp_path / "no-such-agent")], timeout_seconds=5)


def test_auxiliary_call_raises_on_non_zero_exit() -> None:
    with pytest.raises(BackendRunError) as error_info:
        run_auxiliary([sys.executable, "-c", "import sys; sys.exit(5)"])

    assert error_info.value.exit_code == 5


def test_auxiliary_call_returns_stdout() -> None:
    assert run_auxiliary([sys.executable, "-c", "print('diagnosis')"]).strip() == "diagnosis"


_LEADER_WITH_STUBBORN_HELPER = """
import subprocess
import sys
import time

helper = (
    "import os, pathlib, signal, sys, time\\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\\n"
    "pathlib.Path(sys.argv[1]).write_text(str(os.getpid()))\\n"
    "time.sleep(60)\\n"
)
subprocess.Popen([sys.executable, "-c", helper, sys.argv[1]])
time.sleep(60)
"""


def _process_running(pid: int) -> bool:
    try:
        status = Path(f"/proc/{pid}/status").read_text("utf-8")
    except FileNotFoundError:
        return False
    state = next(line for line in status.splitlines() if line.startswith("State:"))
    return "Z" not in state.split()[1]


@pytest.mark.skipif(not Path("/proc").is_dir(), reason="needs /proc to inspect processes")
def test_deadline_kills_helpers_that_ignore_sigterm(tmp_path: Path) -> None:
    pid_file = tmp_path / "helper.pid"

    result = run_with_deadline(
        [sys.executable, "-c", _LEADER_WITH_STUBBORN_HELPER, str(pid_file)],
        timeout_seconds=3,
    )

    assert result.timed_out is True
    helper_pid = int(pid_file.read_text("utf-8"))
    deadline = time.monotonic() + 5
    while _process_running(helper_pid) and time.monotonic() < deadline:
        time.sleep(0.1)
    assert not _process_running(helper_pid)


def test_undecodable_output_is_replaced_not_raised() -> None:
    result = run_with_deadline(
        [
            sys.executable,
            "-c",
            "import sys; sys.stdout.buffer.write(b'{\"result\": \"\\xe2\\x82');"
            " sys.stderr.buffer.write(b'\\xff')",
        ],
        timeout_seconds=30,
    )

    assert result.exit_code == 0
    assert result.stdout.startswith('{"result": "')
    assert "\ufffd" in result.stdout
    assert result.stderr == "\ufffd"


def test_auxiliary_call_tolerates_undecodable_output() -> None:
    output = run_auxiliary(
        [sys.executable, "-c", "import sys; sys.stdout.buffer.write(b'Root cause: \\xe2\\x82')"],
    )

    assert output.startswith("Root cause: ")
    assert output.endswith("\ufffd")
