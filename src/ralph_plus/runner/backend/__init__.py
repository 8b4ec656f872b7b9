"""Agent backend adapters."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from ralph_plus.runner.backend.base import (
    TIMEOUT_EXIT_CODE,
    AgentBackend,
    BackendRunError,
    BackendRunResult,
)
from ralph_plus.runner.backend.claude import ClaudeBackend
from ralph_plus.runner.backend.codex import CodexBackend
from ralph_plus.runner.backend.gemini import GeminiBackend
from ralph_plus.runner.errors import SetupError

if TYPE_CHECKING:
    from ralph_plus.config import RunnerSettings

SUPPORTED_ENGINES = ("claude", "gemini", "codex")


def get_backend(settings: RunnerSettings, *, cwd: Path | None = None) -> AgentBackend:
    """Build the adapter selected by ``settings.engine``."""

    if settings.engine == "claude":
        return ClaudeBackend(max_turns=settings.max_turns, cwd=cwd)
    if settings.engine == "gemini":
        return GeminiBackend(cwd=cwd)
    if settings.engine == "codex":
        return CodexBackend(model=settings.codex_model, cwd=cwd)
    raise SetupError(
        f"Unknown engine: {settings.engine!r} (must be one of {', '.join(SUPPORTED_ENGINES)})",
    )


__all__ = [
    "SUPPORTED_ENGINES",
    "TIMEOUT_EXIT_CODE",
    "AgentBackend",
    "BackendRunError",
    "BackendRunResult",
    "ClaudeBackend",
    "CodexBackend",
    "GeminiBackend",
    "get_backend",
]
