"""Backend interface for agent task execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ralph_plus.runner.models import NormalizedResponse

TIMEOUT_EXIT_CODE = 124


@dataclass(slots=True, frozen=True)
class BackendRunResult:
    """Execution outcome of one agent process."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str


class BackendRunError(RuntimeError):
    """Agent process could not be started or an auxiliary call failed."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class AgentBackend(Protocol):
    """Capability set implemented by every engine adapter."""

    name: str
    display_name: str
    executable: str

    def execute(self, prompt: str, timeout_seconds: int) -> BackendRunResult:
        """Run one full agentic attempt under an external deadline."""

    def convert_once(self, prompt: str) -> str:
        """Single short conversation used for document conversion."""

    def diagnose_once(self, prompt: str) -> str:
        """Single low-turn conversation used for failure diagnosis."""

    def parse(self, raw_output: str) -> NormalizedResponse:
        """Normalize the raw ``execute`` output."""
