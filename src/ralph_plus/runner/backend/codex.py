"""Codex CLI adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from ralph_plus.runner.backend.base import BackendRunError, BackendRunResult
from ralph_plus.runner.backend.parsing import as_int, as_text
from ralph_plus.runner.backend.process import run_auxiliary, run_with_deadline
from ralph_plus.runner.models import NormalizedResponse

logger = logging.getLogger(__name__)

_HELP_PROBE_TIMEOUT_SECONDS = 30
_AGENT_MESSAGE_TYPES = frozenset({"agent_message", "assistant_message"})


@dataclass(slots=True)
class CodexBackend:
    """Runs ``codex exec --full-auto`` and reads its JSONL event stream.

    ``--json`` is only passed when ``codex exec --help`` advertises it.
    Without it the CLI prints plain text, which is taken as the result with
    an implicit success signal.
    """

    model: str | None = None
    executable: str = "codex"
    cwd: Path | None = None
    name: str = "codex"
    display_name: str = "Codex CLI"
    _json_supported: bool | None = field(default=None, init=False, repr=False)

    def execute(self, prompt: str, timeout_seconds: int) -> BackendRunResult:
        run_args = self._exec_args()
        if self._supports_json():
            run_args.append("--json")
        run_args.append(prompt)
        return run_with_deadline(run_args, timeout_seconds=timeout_seconds, cwd=self.cwd)

    def convert_once(self, prompt: str) -> str:
        return run_auxiliary([*self._exec_args(), prompt], cwd=self.cwd)

    def diagnose_once(self, prompt: str) -> str:
        return run_auxiliary([*self._exec_args(), prompt], cwd=self.cwd)

    def parse(self, raw_output: str) -> NormalizedResponse:
        events = _parse_jsonl(raw_output)
        if events is None:
            return NormalizedResponse(is_error=False, result=raw_output.strip())

        result = ""
        subtype = "unknown"
        is_error = False
        turns = input_tokens = cached_tokens = output_tokens = 0
        for event in events:
            event_type = as_text(event.get("type"))
            if event_type == "item.completed":
                item = event.get("item")
                if isinstance(item, dict) and _is_agent_message(item):
                    result = as_text(item.get("text"))
            elif event_type == "turn.completed":
                turns += 1
                usage = event.get("usage")
                if isinstance(usage, dict):
                    input_tokens += as_int(usage.get("input_tokens"))
                    cached_tokens += as_int(usage.get("cached_input_tokens"))
                    output_tokens += as_int(usage.get("output_tokens"))
            elif event_type in {"turn.failed", "error"}:
                is_error = True
                subtype = event_type.replace(".", "_")

        # Codex counts cached tokens inside input_tokens.
        return NormalizedResponse(
            is_error=is_error,
            result=result,
            subtype=subtype,
            num_turns=turns,
            input_tokens=max(input_tokens - cached_tokens, 0),
            output_tokens=output_tokens,
            cache_read_tokens=cached_tokens,
        )

    def _exec_args(self) -> list[str]:
        run_args = [self.executable, "exec", "--full-auto"]
        if self.model:
            run_args.extend(["-m", self.model])
        return run_args

    def _supports_json(self) -> bool:
        if self._json_supported is None:
            try:
                probe = run_with_deadline(
                    [self.executable, "exec", "--help"],
                    timeout_seconds=_HELP_PROBE_TIMEOUT_SECONDS,
                    cwd=self.cwd,
                )
                self._json_supported = "--json" in f"{probe.stdout}\n{probe.stderr}"
            except BackendRunError as error:
                logger.debug("codex help probe failed: %s", error)
                self._json_supported = False
        return self._json_supported


def _parse_jsonl(raw_output: str) -> list[dict[str, object]] | None:
    events: list[dict[str, object]] = []
    for line in raw_output.splitlines():
        stripped = line.strip()
        if not stripped.startswith("{"):
            continue
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict) and "type" in parsed:
            events.append(parsed)
    if not events:
        return None
    return events


def _is_agent_message(item: dict[str, object]) -> bool:
    item_type = item.get("type", item.get("item_type"))
    return isinstance(item_type, str) and item_type in _AGENT_MESSAGE_TYPES
