"""Resilient runner that drives PRD user stories through CLI coding agents."""

__version__ = "0.3.0"
