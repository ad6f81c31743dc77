"""Registry module - Named actions available to plans."""

from .registry import ActionHandler, ActionMetrics, ActionRegistry, accept_any

__all__ = ["ActionHandler", "ActionMetrics", "ActionRegistry", "accept_any"]
