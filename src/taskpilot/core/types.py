"""Core types and data models for taskpilot."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AgentStatus(str, Enum):
    """States of the task orchestrator."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    VALIDATING = "validating"
    ERROR = "error"
    COMPLETED = "completed"


class Priority(str, Enum):
    """Priority of a task plan."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskTier(str, Enum):
    """Risk tier of a registered action."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OperationClass(str, Enum):
    """Coarse grouping that scopes circuit-breaker and error-history state."""

    NETWORK = "network"
    ELEMENT_INTERACTION = "element_interaction"
    HOST_API = "host_api"
    DEFAULT = "default"


class ErrorType(str, Enum):
    """Error taxonomy."""

    NETWORK = "network_error"
    TIMEOUT = "timeout_error"
    TARGET_NOT_FOUND = "target_not_found"
    PERMISSION_DENIED = "permission_denied"
    HOST_API = "host_api_error"
    SCRIPT_EXECUTION = "script_execution_error"
    VALIDATION = "validation_error"
    UNKNOWN_ACTION = "unknown_action"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown_error"


class Severity(str, Enum):
    """Severity of a classified error."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Recoverability category of a classified error."""

    TEMPORARY = "temporary"
    RETRIABLE = "retriable"
    RECOVERABLE = "recoverable"
    PERMANENT = "permanent"
    USER_ACTION = "user_action"


class RetryStrategy(str, Enum):
    """Suggested retry strategy for a classified error."""

    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    EXPONENTIAL = "exponential"
    ALTERNATIVE = "alternative"
    ESCALATE = "escalate"
    ABORT = "abort"


class RecoveryActionType(str, Enum):
    """Kinds of remedial action proposed after a failure."""

    RETRY = "retry"
    WAIT = "wait"
    ALTERNATIVE = "alternative"
    SKIP = "skip"
    ESCALATE = "escalate"
    ABORT = "abort"


class NextState(str, Enum):
    """Where execution goes after a recovery action ran."""

    RETRY = "retry"
    CONTINUE = "continue"
    SKIP = "skip"
    ABORT = "abort"


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class TaskOutcome(str, Enum):
    """Aggregated, user-visible outcome of a task."""

    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class PlanStep(BaseModel):
    """A single step in a task plan."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique step id within the plan")
    type: str = Field(..., description="Registered action name to dispatch")
    description: str = Field(
        default="", description="Natural language description of the step"
    )
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Parameters passed to the action"
    )
    timeout_ms: int | None = Field(
        None, description="Per-action timeout; the configured default when unset"
    )
    retries: int | None = Field(
        None, description="Retries after the first attempt; the configured default when unset"
    )
    dependencies: list[str] = Field(
        default_factory=list, description="Step ids that must complete first"
    )
    required: bool = Field(
        default=True, description="Whether the goal depends on this step"
    )
    rollback_steps: list[str] | None = Field(
        None, description="Step ids that undo this step's effects"
    )


class TaskPlan(BaseModel):
    """A complete, dependency-annotated plan for one instruction."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Plan id")
    instruction: str = Field(..., description="Original instruction")
    steps: list[PlanStep] = Field(..., description="Ordered list of plan steps")
    priority: Priority = Field(default=Priority.MEDIUM)
    risk_level: RiskTier = Field(default=RiskTier.LOW)
    requires_confirmation: bool = Field(default=False)
    reasoning: str = Field(default="")

    def get_step(self, step_id: str) -> PlanStep | None:
        """Look up a step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class AgentExecutionState(BaseModel):
    """Mutable execution state of one active task."""

    status: AgentStatus = Field(default=AgentStatus.IDLE)
    step_count: int = Field(default=0)
    max_steps: int = Field(default=20)
    error_count: int = Field(default=0)
    max_errors: int = Field(default=5)

    @property
    def is_terminal(self) -> bool:
        """Whether the state machine has reached a terminal state."""
        return self.status in (AgentStatus.ERROR, AgentStatus.COMPLETED)

    def enforce_limits(self) -> bool:
        """Force the error state when a bound is violated.

        Returns:
            True if the state was forced to ``error``
        """
        if self.is_terminal:
            return False
        if self.error_count > self.max_errors or self.step_count > self.max_steps:
            self.status = AgentStatus.ERROR
            return True
        return False


class ErrorClassification(BaseModel):
    """Structured classification of one failure."""

    model_config = ConfigDict(frozen=True)

    type: ErrorType
    severity: Severity
    category: ErrorCategory
    recoverable: bool
    retry_strategy: RetryStrategy
    estimated_recovery_ms: int = Field(default=0)
    user_message: str = Field(default="")
    technical_details: str = Field(default="")


class ErrorContext(BaseModel):
    """Execution context in which a failure happened."""

    operation: str = Field(..., description="Action or operation name")
    operation_class: OperationClass = Field(default=OperationClass.DEFAULT)
    step: str = Field(default="", description="Id of the step being executed")
    step_number: int = Field(default=0, description="Zero-based step index")
    total_steps: int = Field(default=1)
    retry_attempt: int = Field(default=0, description="Retries already made")
    max_retries: int = Field(default=3)
    url: str | None = Field(None)
    additional: dict[str, Any] = Field(default_factory=dict)


class RecoveryAction(BaseModel):
    """A concrete remedial action proposed after a failure."""

    id: str
    type: RecoveryActionType
    description: str = Field(default="")
    params: dict[str, Any] = Field(default_factory=dict)
    estimated_duration_ms: int = Field(default=0)
    confidence: float = Field(default=0.5)


class RecoveryDecision(BaseModel):
    """Classification plus the ranked recovery actions derived from it."""

    classification: ErrorClassification
    actions: list[RecoveryAction] = Field(default_factory=list)

    @property
    def top_action(self) -> RecoveryAction | None:
        """Highest-confidence recovery action, if any."""
        return self.actions[0] if self.actions else None


class RecoveryResult(BaseModel):
    """Outcome of executing a recovery action."""

    success: bool
    action: RecoveryAction
    message: str = Field(default="")
    duration_ms: float = Field(default=0.0)
    error: str | None = Field(None)
    next_state: NextState = Field(default=NextState.ABORT)


class ErrorPatternReport(BaseModel):
    """Aggregate view over the error history of one operation class."""

    error_frequency: float = Field(..., description="Errors per hour")
    common_error_types: list[ErrorType] = Field(default_factory=list)
    average_recovery_ms: float = Field(default=0.0)
    success_rate: float = Field(default=1.0, description="Share of recoverable errors")
    recommendations: list[str] = Field(default_factory=list)


class CircuitBreakerState(BaseModel):
    """Snapshot of one circuit breaker."""

    state: BreakerState = Field(default=BreakerState.CLOSED)
    failure_timestamps: list[float] = Field(default_factory=list)
    last_failure_time: float | None = Field(None)


class AttemptRecord(BaseModel):
    """One handler invocation made while dispatching an action."""

    attempt: int
    success: bool
    duration_ms: float
    error: str | None = Field(None)


class ActionResult(BaseModel):
    """Result of dispatching or performing an action."""

    success: bool = Field(..., description="Whether the action succeeded")
    data: Any = Field(None, description="Handler return value")
    error: str | None = Field(None, description="Error message on failure")
    duration_ms: float = Field(default=0.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    classification: ErrorClassification | None = Field(
        None, description="Classification of the final failure"
    )


class ExecutionStats(BaseModel):
    """Rolling dispatch statistics."""

    total_actions: int = Field(default=0)
    successful_actions: int = Field(default=0)
    failed_actions: int = Field(default=0)
    average_execution_time_ms: float = Field(default=0.0)


class DispatchOptions(BaseModel):
    """Per-dispatch execution options."""

    timeout_ms: int = Field(default=30000)
    retry_count: int = Field(default=2)
    retry_delay_ms: int = Field(default=1000)
    stop_on_failure: bool = Field(
        default=False, description="Stop a batch after this action fails"
    )


class DispatchRequest(BaseModel):
    """One entry of a batch or parallel dispatch."""

    name: str
    params: dict[str, Any] = Field(default_factory=dict)
    options: DispatchOptions | None = Field(None)


class Geometry(BaseModel):
    """Bounding box of a candidate object."""

    x: float = Field(default=0.0)
    y: float = Field(default=0.0)
    width: float = Field(default=0.0)
    height: float = Field(default=0.0)

    @property
    def center(self) -> tuple[int, int]:
        """Center point as integer coordinates."""
        return (int(self.x + self.width / 2), int(self.y + self.height / 2))


class Candidate(BaseModel):
    """An interactive object extracted from the live environment."""

    index: int = Field(..., description="Stable index within one snapshot")
    kind: str = Field(..., description="Element kind, e.g. button, input, a")
    text_content: str = Field(default="")
    attributes: dict[str, str] = Field(default_factory=dict)
    is_visible: bool = Field(default=True)
    is_interactive: bool = Field(default=True)
    geometry: Geometry | None = Field(None)
    depth: int = Field(default=0, description="DOM nesting depth")


class ResolutionContext(BaseModel):
    """Optional caller-supplied page context for target resolution."""

    url: str | None = Field(None)
    page_title: str | None = Field(None)


class ScoredCandidate(BaseModel):
    """A candidate together with its combined relevance score."""

    candidate: Candidate
    score: float


class ResolutionResult(BaseModel):
    """Outcome of resolving a description to a candidate.

    Acceptance is decided on the raw score. A fuzzy result reports that score
    discounted by the fuzzy factor, so its ``confidence`` may sit below
    ``ACCEPT_THRESHOLD`` even though ``best`` is set. Callers should test
    ``best`` for acceptance and treat ``confidence`` as a ranking signal.
    """

    best: Candidate | None = Field(None)
    confidence: float = Field(default=0.0)
    alternatives: list[Candidate] = Field(default_factory=list)
    reasoning: str = Field(default="")
    strategy: str = Field(default="weighted")


class StepRecord(BaseModel):
    """Execution record for one dispatched plan step."""

    step_id: str
    step_index: int
    action: str
    description: str = Field(default="")
    success: bool
    error: str | None = Field(None)
    data: Any = Field(None)
    duration_ms: float = Field(default=0.0)


class PlanningContext(BaseModel):
    """Context handed to the planning collaborator."""

    task_id: str
    step_index: int = Field(default=0)
    completed_step_ids: list[str] = Field(default_factory=list)
    history: list[StepRecord] = Field(default_factory=list)
    last_error: str | None = Field(None)
    available_actions: list[dict[str, Any]] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Verdict of the validation collaborator."""

    is_valid: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    message: str = Field(default="")
    should_retry: bool = Field(default=False)
    suggestions: list[str] = Field(default_factory=list)


class TaskOptions(BaseModel):
    """Options for one orchestrated task."""

    max_steps: int = Field(default=20)
    max_errors: int = Field(default=5)
    enable_validation: bool = Field(default=True)
    enable_replanning: bool = Field(default=True)


class TaskResult(BaseModel):
    """Final, aggregated result of one task."""

    success: bool
    outcome: TaskOutcome
    data: Any = Field(None)
    error: str | None = Field(None)
    confidence: float = Field(default=0.0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class OrchestratorStatus(BaseModel):
    """Externally visible orchestrator status."""

    is_running: bool
    current_task_id: str | None = Field(None)
    is_paused: bool = Field(default=False)
