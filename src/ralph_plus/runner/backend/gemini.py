"""Gemini CLI adapter."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ralph_plus.runner.backend.base import BackendRunResult
from ralph_plus.runner.backend.parsing import as_int, as_text, load_json_object
from ralph_plus.runner.backend.process import run_auxiliary, run_with_deadline
from ralph_plus.runner.models import NormalizedResponse


@dataclass(slots=True, frozen=True)
class GeminiBackend:
    """Runs ``gemini --yolo`` in JSON mode.

    Gemini reports failure through a nullable ``error`` object and has no
    cost, turn count or turn limit.  Cached tokens come as one counter, so
    cache creation is always zero.
    """

    executable: str = "gemini"
    cwd: Path | None = None
    name: str = "gemini"
    display_name: str = "Gemini CLI"

    def execute(self, prompt: str, timeout_seconds: int) -> BackendRunResult:
        return run_with_deadline(
            [self.executable, "--yolo", "--output-format", "json", "-p", prompt],
            timeout_seconds=timeout_seconds,
            cwd=self.cwd,
        )

    def convert_once(self, prompt: str) -> str:
        return run_auxiliary([self.executable, "--yolo", "-p", prompt], cwd=self.cwd)

    def diagnose_once(self, prompt: str) -> str:
        return run_auxiliary([self.executable, "--yolo", "-p", prompt], cwd=self.cwd)

    def parse(self, raw_output: str) -> NormalizedResponse:
        payload = load_json_object(raw_output)
        if payload is None:
            return NormalizedResponse(is_error=True)

        error = payload.get("error")
        subtype = "unknown"
        if isinstance(error, dict):
            subtype = as_text(error.get("type")) or "unknown"

        prompt_tokens = candidates_tokens = cached_tokens = 0
        for tokens in _model_token_blocks(payload):
            prompt_tokens += as_int(tokens.get("prompt"))
            candidates_tokens += as_int(tokens.get("candidates"))
            cached_tokens += as_int(tokens.get("cached"))

        return NormalizedResponse(
            is_error=error is not None,
            result=as_text(payload.get("response")),
            subtype=subtype,
            input_tokens=prompt_tokens,
            output_tokens=candidates_tokens,
            cache_read_tokens=cached_tokens,
        )


def _model_token_blocks(payload: dict[str, object]) -> list[dict[str, object]]:
    stats = payload.get("stats")
    if not isinstance(stats, dict):
        return []
    models = stats.get("models")
    if isinstance(models, dict):
        entries = list(models.values())
    elif isinstance(models, list):
        entries = models
    else:
        return []
    blocks: list[dict[str, object]] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        tokens = entry.get("tokens")
        if isinstance(tokens, dict):
            blocks.append(tokens)
    return blocks
