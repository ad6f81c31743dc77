"""Orchestrator module - Task state machine driving planning, dispatch, and validation."""

from .orchestrator import EVENTS, TaskOrchestrator

__all__ = ["EVENTS", "TaskOrchestrator"]
