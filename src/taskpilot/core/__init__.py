"""Core module - Shared types, interfaces, errors, and configuration."""

from .config import Config
from .errors import (
    ActionFailedError,
    ActionTimeoutError,
    CircuitOpenError,
    HostApiError,
    ParameterValidationError,
    PermissionDeniedError,
    PlanningError,
    ScriptExecutionError,
    TargetNotFoundError,
    TaskInProgressError,
    TaskPilotError,
    UnknownActionError,
)
from .interfaces import (
    EnvironmentAdapter,
    PlanningCollaborator,
    ValidationCollaborator,
)
from .types import (
    ActionResult,
    AgentExecutionState,
    AgentStatus,
    BreakerState,
    Candidate,
    DispatchOptions,
    DispatchRequest,
    ErrorClassification,
    ErrorContext,
    ExecutionStats,
    OperationClass,
    PlanStep,
    RecoveryAction,
    ResolutionResult,
    TaskOptions,
    TaskOutcome,
    TaskPlan,
    TaskResult,
    ValidationResult,
)

__all__ = [
    "Config",
    # Errors
    "ActionFailedError",
    "ActionTimeoutError",
    "CircuitOpenError",
    "HostApiError",
    "ParameterValidationError",
    "PermissionDeniedError",
    "PlanningError",
    "ScriptExecutionError",
    "TargetNotFoundError",
    "TaskInProgressError",
    "TaskPilotError",
    "UnknownActionError",
    # Interfaces
    "EnvironmentAdapter",
    "PlanningCollaborator",
    "ValidationCollaborator",
    # Types
    "ActionResult",
    "AgentExecutionState",
    "AgentStatus",
    "BreakerState",
    "Candidate",
    "DispatchOptions",
    "DispatchRequest",
    "ErrorClassification",
    "ErrorContext",
    "ExecutionStats",
    "OperationClass",
    "PlanStep",
    "RecoveryAction",
    "ResolutionResult",
    "TaskOptions",
    "TaskOutcome",
    "TaskPlan",
    "TaskResult",
    "ValidationResult",
]
