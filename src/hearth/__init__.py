"""Hearth — dialog orchestration engine for a home voice assistant."""

__version__ = "0.1.0"
