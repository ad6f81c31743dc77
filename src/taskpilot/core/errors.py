"""Exception hierarchy raised by taskpilot components and action handlers."""


class TaskPilotError(Exception):
    """Base class for all taskpilot errors."""


class ActionTimeoutError(TaskPilotError, TimeoutError):
    """An action handler did not settle within its timeout.

    The handler is not cancelled; its side effects may still land later.
    """

    def __init__(self, action_name: str, timeout_ms: int) -> None:
        super().__init__(f"Action {action_name} timed out after {timeout_ms}ms")
        self.action_name = action_name
        self.timeout_ms = timeout_ms


class TargetNotFoundError(TaskPilotError):
    """No candidate matched a target description with enough confidence."""


class PermissionDeniedError(TaskPilotError, PermissionError):
    """The environment refused an operation."""


class HostApiError(TaskPilotError):
    """The host (browser) API failed or is unavailable."""


class ScriptExecutionError(TaskPilotError):
    """A script evaluated inside the environment failed."""


class ActionFailedError(TaskPilotError):
    """A handler reported failure through its result instead of raising."""


class ParameterValidationError(TaskPilotError, ValueError):
    """Action parameters were rejected by the registered predicate."""


class UnknownActionError(TaskPilotError, LookupError):
    """The requested action is not present in the registry."""

    def __init__(self, action_name: str) -> None:
        super().__init__(f"Unknown action: {action_name}")
        self.action_name = action_name


class CircuitOpenError(TaskPilotError):
    """The circuit breaker for an operation class is open."""

    def __init__(self, operation_class: str) -> None:
        super().__init__(f"Circuit breaker open for {operation_class}")
        self.operation_class = operation_class


class PlanningError(TaskPilotError):
    """The planning collaborator failed to produce a usable plan."""


class TaskInProgressError(TaskPilotError, RuntimeError):
    """A task is already running on this orchestrator."""
