"""Action Registry - Named action handlers with parameter predicates and metadata."""

from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from taskpilot.core.types import OperationClass, RiskTier


logger = structlog.get_logger()


ActionCallable = Callable[[dict[str, Any]], Awaitable[Any] | Any]
ParamValidator = Callable[[dict[str, Any]], bool]


def accept_any(params: dict[str, Any]) -> bool:
    """Default parameter predicate: any mapping is valid."""
    return isinstance(params, dict)


class ActionHandler(BaseModel):
    """A registered action."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    invoke: ActionCallable
    validate_params: ParamValidator = Field(default=accept_any)
    description: str = Field(default="")
    risk_tier: RiskTier = Field(default=RiskTier.LOW)
    category: str = Field(default="browser")
    operation_class: OperationClass | None = Field(
        None, description="Overrides the class derived from the action name"
    )


class ActionMetrics(BaseModel):
    """Per-action execution counters."""

    executions: int = Field(default=0)
    successes: int = Field(default=0)
    failures: int = Field(default=0)
    average_duration_ms: float = Field(default=0.0)


class ActionRegistry:
    """Ordered mapping from action name to handler."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._actions: dict[str, ActionHandler] = {}
        self._metrics: dict[str, ActionMetrics] = {}

    def register(
        self,
        name: str,
        handler: ActionCallable,
        validate: ParamValidator | None = None,
        description: str = "",
        risk_tier: RiskTier = RiskTier.LOW,
        category: str = "browser",
        operation_class: OperationClass | None = None,
    ) -> ActionHandler:
        """Register an action.

        Registering an existing name replaces the previous handler.

        Args:
            name: Action name used by plans and dispatch calls
            handler: Callable receiving the params mapping
            validate: Parameter predicate; defaults to accepting any mapping
            description: Human readable description (shown to the planner)
            risk_tier: Risk tier of the action
            category: Free-form grouping, e.g. "browser" or "utility"
            operation_class: Explicit operation class for breaker scoping

        Returns:
            The registered handler

        Raises:
            ValueError: If the name is empty or the handler is not callable
        """
        if not name:
            raise ValueError("Action name must not be empty")
        if not callable(handler):
            raise ValueError(f"Handler for action {name} is not callable")

        action = ActionHandler(
            name=name,
            invoke=handler,
            validate_params=validate or accept_any,
            description=description,
            risk_tier=risk_tier,
            category=category,
            operation_class=operation_class,
        )

        if name in self._actions:
            logger.warning("action_replaced", name=name)

        self._actions[name] = action
        self._metrics[name] = ActionMetrics()

        logger.info(
            "action_registered",
            name=name,
            category=category,
            risk_tier=risk_tier.value,
        )
        return action

    def unregister(self, name: str) -> bool:
        """Remove an action.

        Args:
            name: Action name

        Returns:
            True if the action existed
        """
        if name not in self._actions:
            return False

        del self._actions[name]
        self._metrics.pop(name, None)
        logger.info("action_unregistered", name=name)
        return True

    def get(self, name: str) -> ActionHandler | None:
        """Get a handler by name."""
        return self._actions.get(name)

    def list_actions(self) -> list[str]:
        """Get registered action names in registration order."""
        return list(self._actions)

    def by_category(self, category: str) -> list[str]:
        """Get action names registered under a category."""
        return [name for name, action in self._actions.items() if action.category == category]

    def describe(self) -> list[dict[str, Any]]:
        """Describe every action for prompt construction."""
        return [
            {
                "name": action.name,
                "description": action.description,
                "risk_tier": action.risk_tier.value,
                "category": action.category,
            }
            for action in self._actions.values()
        ]

    def record_execution(self, name: str, success: bool, duration_ms: float) -> None:
        """Fold one dispatch outcome into the action's metrics.

        Args:
            name: Action name
            success: Whether the dispatch succeeded
            duration_ms: Dispatch duration
        """
        metrics = self._metrics.get(name)
        if metrics is None:
            return

        metrics.executions += 1
        if success:
            metrics.successes += 1
        else:
            metrics.failures += 1
        metrics.average_duration_ms = (
            metrics.average_duration_ms * (metrics.executions - 1) + duration_ms
        ) / metrics.executions

    def get_metrics(self, name: str) -> ActionMetrics | None:
        """Get a copy of the metrics for one action."""
        metrics = self._metrics.get(name)
        return metrics.model_copy() if metrics else None

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    list = list_actions
