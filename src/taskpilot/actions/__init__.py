"""Actions module - Built-in browser actions."""

from .browser_actions import BrowserActions

__all__ = ["BrowserActions"]
