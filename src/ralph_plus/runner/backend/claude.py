"""Claude Code CLI adapter."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ralph_plus.runner.backend.base import BackendRunResult
from ralph_plus.runner.backend.parsing import as_float, as_int, as_text, load_json_object
from ralph_plus.runner.backend.process import run_auxiliary, run_with_deadline
from ralph_plus.runner.models import NormalizedResponse

CONVERT_MAX_TURNS = 10
DIAGNOSE_MAX_TURNS = 1


@dataclass(slots=True, frozen=True)
class ClaudeBackend:
    """Runs ``claude --print`` and reads its JSON result object."""

    max_turns: int
    executable: str = "claude"
    cwd: Path | None = None
    name: str = "claude"
    display_name: str = "Claude Code"

    def execute(self, prompt: str, timeout_seconds: int) -> BackendRunResult:
        return run_with_deadline(
            [
                self.executable,
                "--print",
                "--output-format",
                "json",
                "--max-turns",
                str(self.max_turns),
                "--dangerously-skip-permissions",
                "-p",
                prompt,
            ],
            timeout_seconds=timeout_seconds,
            cwd=self.cwd,
        )

    def convert_once(self, prompt: str) -> str:
        return run_auxiliary(self._plain_args(prompt, max_turns=CONVERT_MAX_TURNS), cwd=self.cwd)

    def diagnose_once(self, prompt: str) -> str:
        return run_auxiliary(self._plain_args(prompt, max_turns=DIAGNOSE_MAX_TURNS), cwd=self.cwd)

    def parse(self, raw_output: str) -> NormalizedResponse:
        payload = load_json_object(raw_output)
        if payload is None:
            return NormalizedResponse(is_error=True)

        # A missing is_error is a failure, only an explicit false is success.
        is_error = payload.get("is_error", True) is not False
        usage = payload.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return NormalizedResponse(
            is_error=is_error,
            result=as_text(payload.get("result")),
            cost_usd=as_float(payload.get("total_cost_usd")),
            subtype=as_text(payload.get("subtype")) or "unknown",
            num_turns=as_int(payload.get("num_turns")),
            input_tokens=as_int(usage.get("input_tokens")),
            output_tokens=as_int(usage.get("output_tokens")),
            cache_read_tokens=as_int(usage.get("cache_read_input_tokens")),
            cache_create_tokens=as_int(usage.get("cache_creation_input_tokens")),
        )

    def _plain_args(self, prompt: str, *, max_turns: int) -> list[str]:
        return [
            self.executable,
            "--print",
            "--max-turns",
            str(max_turns),
            "--dangerously-skip-permissions",
            "-p",
            prompt,
        ]
