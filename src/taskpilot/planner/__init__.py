"""Planner module - LLM planning and validation collaborators."""

from .planner import AnthropicPlanner

__all__ = ["AnthropicPlanner"]
