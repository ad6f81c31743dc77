"""taskpilot - Orchestration core for planning and executing browser tasks."""

__version__ = "0.1.0"
