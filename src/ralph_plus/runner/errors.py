"""Fatal errors raised before any task runs."""

from __future__ import annotations


class SetupError(RuntimeError):
    """Invalid configuration, unreadable PRD or state file, missing tooling."""
