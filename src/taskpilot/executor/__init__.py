"""Executor module - Playwright environment adapter."""

from .executor import PlaywrightEnvironment

__all__ = ["PlaywrightEnvironment"]
