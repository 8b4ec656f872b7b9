"""Runtime configuration for the task runner.

Precedence, highest first: explicit CLI flags, the PRD ``config`` block,
``RALPH_*`` environment variables, built-in defaults.  The result is one
frozen ``RunnerSettings`` value passed explicitly to the engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from ralph_plus.runner.backend import SUPPORTED_ENGINES
from ralph_plus.runner.errors import SetupError

DEFAULT_CONVERT_PROMPT = Path("~/.claude/commands/ralph.md")

_DOCUMENT_CONFIG_KEYS = {
    "maxRetries": "max_retries",
    "timeoutSeconds": "timeout_seconds",
    "maxTurns": "max_turns",
    "engine": "engine",
}


@dataclass(slots=True, frozen=True)
class RunnerSettings:
    """Resolved settings for one run."""

    engine: str = "claude"
    max_retries: int = 10
    timeout_seconds: int = 600
    max_turns: int = 50
    codex_model: str | None = None
    diag_learn: bool = False
    show_cost: bool = False
    dry_run: bool = False
    resume: bool = False
    convert_prompt_path: Path = DEFAULT_CONVERT_PROMPT
    diff_line_limit: int = 200
    diagnosis_tail_chars: int = 2000

    @classmethod
    def from_env(cls) -> RunnerSettings:
        """Load environment overrides on top of built-in defaults."""

        return cls(
            engine=os.getenv("RALPH_ENGINE", "claude").strip().lower(),
            max_retries=_env_int("RALPH_MAX_RETRIES", 10),
            timeout_seconds=_env_int("RALPH_TIMEOUT", 600),
            max_turns=_env_int("RALPH_MAX_TURNS", 50),
            codex_model=os.getenv("RALPH_CODEX_MODEL") or None,
            diag_learn=_env_bool("RALPH_DIAG_LEARN", default=False),
            convert_prompt_path=Path(
                os.getenv("RALPH_CONVERT_PROMPT", str(DEFAULT_CONVERT_PROMPT)),
            ).expanduser(),
        )

    def validate(self) -> None:
        """Raise ``SetupError`` for values the engine cannot run with."""

        if self.engine not in SUPPORTED_ENGINES:
            raise SetupError(
                f"Unknown engine: {self.engine!r} (must be one of {', '.join(SUPPORTED_ENGINES)})",
            )
        if self.max_retries < 1:
            raise SetupError("max retries must be >= 1.")
        if self.timeout_seconds < 1:
            raise SetupError("timeout must be >= 1 second.")
        if self.max_turns < 1:
            raise SetupError("max turns must be >= 1.")
        if self.diff_line_limit < 1:
            raise SetupError("diff line limit must be >= 1.")


@dataclass(slots=True, frozen=True)
class SettingsOverrides:
    """Values given explicitly on the command line; ``None`` means unset."""

    engine: str | None = None
    max_retries: int | None = None
    timeout_seconds: int | None = None
    max_turns: int | None = None
    codex_model: str | None = None
    diag_learn: bool | None = None
    show_cost: bool | None = None
    dry_run: bool | None = None
    resume: bool | None = None

    def as_changes(self) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for item in fields(self):
            name = item.name
            value = getattr(self, name)
            if value is None:
                continue
            changes[name] = value.strip().lower() if name == "engine" else value
        return changes


def resolve_settings(
    *,
    overrides: SettingsOverrides,
    document_config: dict[str, Any] | None = None,
    base: RunnerSettings | None = None,
) -> RunnerSettings:
    """Apply PRD config and CLI overrides on top of environment settings."""

    settings = base if base is not None else RunnerSettings.from_env()
    settings = replace(settings, **parse_document_config(document_config or {}))
    settings = replace(settings, **overrides.as_changes())
    settings.validate()
    return settings


def parse_document_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Translate a PRD ``config`` block into settings field values."""

    if not isinstance(raw, dict):
        raise SetupError("PRD config must be an object.")
    changes: dict[str, Any] = {}
    for key, field_name in _DOCUMENT_CONFIG_KEYS.items():
        value = raw.get(key)
        if value is None or value == "":
            continue
        if field_name == "engine":
            if not isinstance(value, str):
                raise SetupError(f"PRD config.{key} must be a string.")
            changes[field_name] = value.strip().lower()
            continue
        changes[field_name] = _coerce_config_int(f"PRD config.{key}", value)
    return changes


def _coerce_config_int(label: str, value: object) -> int:
    if isinstance(value, bool):
        raise SetupError(f"{label} must be an integer, got {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise SetupError(f"{label} must be an integer, got {value!r}.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise SetupError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise SetupError(f"Invalid boolean value for {name}: {value!r}")
