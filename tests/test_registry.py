"""Unit tests for the action registry."""

import pytest

from taskpilot.core.types import OperationClass, RiskTier
from taskpilot.registry import ActionRegistry, accept_any


async def _noop(params):
    return None


class TestActionRegistry:
    """Test suite for ActionRegistry class."""

    def test_register_returns_handler(self, registry: ActionRegistry) -> None:
        """Test that register() stores a typed handler with its metadata."""
        handler = registry.register(
            "click_element",
            _noop,
            description="Click an element",
            risk_tier=RiskTier.MEDIUM,
        )

        assert handler.name == "click_element"
        assert handler.invoke is _noop
        assert handler.validate_params is accept_any
        assert handler.risk_tier == RiskTier.MEDIUM
        assert registry.get("click_element") == handler

    def test_list_preserves_registration_order(self, registry: ActionRegistry) -> None:
        """Test that list() returns names in registration order."""
        for name in ("navigate", "click_element", "done"):
            registry.register(name, _noop)

        assert registry.list() == ["navigate", "click_element", "done"]
        assert len(registry) == 3
        assert "done" in registry

    def test_register_replaces_existing(self, registry: ActionRegistry) -> None:
        """Test that registering an existing name replaces the handler."""
        registry.register("navigate", _noop, description="old")
        registry.register("navigate", _noop, description="new")

        assert registry.list() == ["navigate"]
        assert registry.get("navigate").description == "new"

    def test_unregister(self, registry: ActionRegistry) -> None:
        """Test that unregister() removes actions and reports whether they existed."""
        registry.register("navigate", _noop)

        assert registry.unregister("navigate") is True
        assert registry.unregister("navigate") is False
        assert registry.get("navigate") is None
        assert registry.get_metrics("navigate") is None

    def test_register_rejects_empty_name(self, registry: ActionRegistry) -> None:
        """Test that an empty action name is rejected."""
        with pytest.raises(ValueError, match="must not be empty"):
            registry.register("", _noop)

    def test_register_rejects_non_callable(self, registry: ActionRegistry) -> None:
        """Test that a non-callable handler is rejected."""
        with pytest.raises(ValueError, match="not callable"):
            registry.register("broken", "not a function")

    def test_by_category_and_describe(self, registry: ActionRegistry) -> None:
        """Test category lookup and prompt descriptions."""
        registry.register("navigate", _noop, description="Go to a URL")
        registry.register("wait", _noop, category="utility")

        assert registry.by_category("utility") == ["wait"]
        assert registry.describe()[0] == {
            "name": "navigate",
            "description": "Go to a URL",
            "risk_tier": "low",
            "category": "browser",
        }

    def test_operation_class_override(self, registry: ActionRegistry) -> None:
        """Test that an explicit operation class is kept on the handler."""
        handler = registry.register(
            "transfer", _noop, operation_class=OperationClass.HOST_API
        )

        assert handler.operation_class == OperationClass.HOST_API

    def test_record_execution_updates_metrics(self, registry: ActionRegistry) -> None:
        """Test that per-action metrics keep a running average."""
        registry.register("navigate", _noop)

        registry.record_execution("navigate", True, 10.0)
        registry.record_execution("navigate", False, 30.0)

        metrics = registry.get_metrics("navigate")
        assert metrics.executions == 2
        assert metrics.successes == 1
        assert metrics.failures == 1
        assert metrics.average_duration_ms == pytest.approx(20.0)

    def test_record_execution_ignores_unknown_action(self, registry: ActionRegistry) -> None:
        """Test that recording for an unregistered action is a no-op."""
        registry.record_execution("missing", True, 5.0)

        assert registry.get_metrics("missing") is None
