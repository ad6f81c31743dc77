"""Dispatcher module - Action execution with timeout, retry, and circuit breaking."""

from .dispatcher import ActionDispatcher

__all__ = ["ActionDispatcher"]
