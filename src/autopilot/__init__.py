"""Autopilot orchestrator for external coding-agent CLIs."""

__version__ = "0.1.0"
