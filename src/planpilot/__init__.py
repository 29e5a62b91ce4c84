"""PlanPilot: turn natural-language requests into sandboxed, revertible workspace plans."""

__version__ = "0.1.0"
