"""Recovery Planner - Ranked recovery actions for classified failures."""

import time
from typing import Awaitable, Callable

import structlog

from taskpilot.core.config import Config
from taskpilot.core.errors import CircuitOpenError
from taskpilot.core.types import (
    BreakerState,
    ErrorCategory,
    ErrorClassification,
    ErrorContext,
    ErrorPatternReport,
    ErrorType,
    NextState,
    OperationClass,
    RecoveryAction,
    RecoveryActionType,
    RecoveryDecision,
    RecoveryResult,
    RetryStrategy,
    Severity,
)
from taskpilot.recovery.circuit_breaker import CircuitBreakerRegistry
from taskpilot.recovery.classifier import ErrorClassifier
from taskpilot.recovery.history import ErrorHistory


logger = structlog.get_logger()


MAX_RECOVERY_ACTIONS = 3

SEVERITY_MULTIPLIERS: dict[Severity, float] = {
    Severity.LOW: 1.2,
    Severity.MEDIUM: 1.0,
    Severity.HIGH: 0.8,
    Severity.CRITICAL: 0.5,
}

# Base strategies per error type; confidences are base weights.
BASE_STRATEGIES: dict[ErrorType, tuple[RecoveryAction, ...]] = {
    ErrorType.NETWORK: (
        RecoveryAction(
            id="retry_network",
            type=RecoveryActionType.RETRY,
            description="Retry network request",
            params={"backoff": "exponential"},
            estimated_duration_ms=10000,
            confidence=0.8,
        ),
        RecoveryAction(
            id="wait_network",
            type=RecoveryActionType.WAIT,
            description="Wait for network recovery",
            params={"duration_ms": 5000},
            estimated_duration_ms=5000,
            confidence=0.6,
        ),
    ),
    ErrorType.TARGET_NOT_FOUND: (
        RecoveryAction(
            id="retry_element",
            type=RecoveryActionType.RETRY,
            description="Retry element interaction",
            params={"alternative_selectors": True},
            estimated_duration_ms=3000,
            confidence=0.7,
        ),
        RecoveryAction(
            id="scroll_to_element",
            type=RecoveryActionType.ALTERNATIVE,
            description="Scroll and try to find element",
            params={"direction": "down"},
            estimated_duration_ms=2000,
            confidence=0.6,
        ),
        RecoveryAction(
            id="wait_for_element",
            type=RecoveryActionType.WAIT,
            description="Wait for element to appear",
            params={"duration_ms": 3000},
            estimated_duration_ms=3000,
            confidence=0.5,
        ),
    ),
    ErrorType.TIMEOUT: (
        RecoveryAction(
            id="increase_timeout",
            type=RecoveryActionType.RETRY,
            description="Retry with increased timeout",
            params={"timeout_multiplier": 2},
            estimated_duration_ms=15000,
            confidence=0.8,
        ),
        RecoveryAction(
            id="reduce_complexity",
            type=RecoveryActionType.ALTERNATIVE,
            description="Try simpler approach",
            estimated_duration_ms=5000,
            confidence=0.6,
        ),
    ),
    ErrorType.PERMISSION_DENIED: (
        RecoveryAction(
            id="request_permission",
            type=RecoveryActionType.ESCALATE,
            description="Request required permissions",
            confidence=0.9,
        ),
    ),
    ErrorType.SCRIPT_EXECUTION: (
        RecoveryAction(
            id="retry_script",
            type=RecoveryActionType.RETRY,
            description="Retry script execution",
            estimated_duration_ms=3000,
            confidence=0.6,
        ),
    ),
    ErrorType.HOST_API: (
        RecoveryAction(
            id="wait_host_api",
            type=RecoveryActionType.WAIT,
            description="Wait for the browser API to recover",
            params={"duration_ms": 2000},
            estimated_duration_ms=2000,
            confidence=0.5,
        ),
    ),
}

_ABORT = RecoveryAction(
    id="abort",
    type=RecoveryActionType.ABORT,
    description="Abort execution",
    confidence=1.0,
)

_NEXT_STATES: dict[RecoveryActionType, NextState] = {
    RecoveryActionType.RETRY: NextState.RETRY,
    RecoveryActionType.WAIT: NextState.RETRY,
    RecoveryActionType.SKIP: NextState.SKIP,
    RecoveryActionType.ALTERNATIVE: NextState.CONTINUE,
    RecoveryActionType.ESCALATE: NextState.ABORT,
    RecoveryActionType.ABORT: NextState.ABORT,
}

RecoveryExecutor = Callable[[RecoveryAction], Awaitable[bool]]


class RecoveryPlanner:
    """Produces ranked recovery actions from a classification and its context."""

    def __init__(
        self,
        config: Config | None = None,
        classifier: ErrorClassifier | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        history: ErrorHistory | None = None,
    ) -> None:
        """Initialize the recovery planner.

        Args:
            config: Application configuration
            classifier: Error classifier; a default one is created if omitted
            breakers: Circuit breakers consulted for the operation class
            history: Error history fed by ``handle_error``
        """
        self.config = config or Config()
        self.classifier = classifier or ErrorClassifier()
        self.breakers = breakers
        self.history = history or ErrorHistory(max_entries=self.config.error_history_size)

    def handle_error(self, error: BaseException | str, context: ErrorContext) -> RecoveryDecision:
        """Classify a failure, record it, and plan recovery.

        Args:
            error: Raw failure
            context: Execution context

        Returns:
            Classification with ranked recovery actions
        """
        classification = self.classifier.classify(error, context)
        self.history.record(context.operation_class, classification)

        breaker_state = None
        if self.breakers is not None:
            breaker_state = self.breakers.state(context.operation_class)

        decision = self.plan(classification, context, breaker_state)

        logger.info(
            "error_classified",
            operation=context.operation,
            type=decision.classification.type.value,
            severity=decision.classification.severity.value,
            recoverable=decision.classification.recoverable,
            recovery_actions=[action.id for action in decision.actions],
        )
        return decision

    def plan(
        self,
        classification: ErrorClassification,
        context: ErrorContext,
        breaker_state: BreakerState | None = None,
    ) -> RecoveryDecision:
        """Rank recovery actions for a classification.

        Args:
            classification: Classification of the failure
            context: Execution context
            breaker_state: State of the operation-class circuit breaker

        Returns:
            Up to three actions, highest confidence first
        """
        if breaker_state == BreakerState.OPEN:
            return self.circuit_open(context, classification)

        candidates = [
            base.model_copy(
                update={"confidence": self.action_confidence(base, classification, context)}
            )
            for base in BASE_STRATEGIES.get(classification.type, ())
        ]
        candidates.extend(self._context_actions(classification, context))

        actions = [action for action in candidates if self.is_applicable(action, context)]
        actions.sort(key=lambda action: action.confidence, reverse=True)

        if not actions:
            actions = [_ABORT]

        return RecoveryDecision(
            classification=classification,
            actions=actions[:MAX_RECOVERY_ACTIONS],
        )

    def circuit_open(
        self,
        context: ErrorContext,
        classification: ErrorClassification | None = None,
    ) -> RecoveryDecision:
        """Escalate to abort because the operation class breaker is open."""
        if classification is None:
            classification = self.classifier.classify(
                CircuitOpenError(context.operation_class.value), context
            )

        logger.warning(
            "circuit_breaker_abort",
            operation=context.operation,
            operation_class=context.operation_class.value,
            original_type=classification.type.value,
        )

        escalated = classification.model_copy(
            update={
                "severity": Severity.CRITICAL,
                "category": ErrorCategory.PERMANENT,
                "recoverable": False,
                "retry_strategy": RetryStrategy.ABORT,
                "estimated_recovery_ms": 0,
                "user_message": "Service temporarily unavailable due to repeated failures",
                "technical_details": f"Circuit breaker tripped for {context.operation}",
            }
        )
        return RecoveryDecision(
            classification=escalated,
            actions=[
                RecoveryAction(
                    id="circuit_breaker_abort",
                    type=RecoveryActionType.ABORT,
                    description="Abort due to circuit breaker",
                    confidence=1.0,
                )
            ],
        )

    def action_confidence(
        self,
        action: RecoveryAction,
        classification: ErrorClassification,
        context: ErrorContext,
    ) -> float:
        """Decay and scale a base confidence, clamped to [0.1, 1.0]."""
        confidence = action.confidence
        confidence *= max(0.3, 1 - context.retry_attempt * 0.2)

        if (
            action.type == RecoveryActionType.RETRY
            and classification.retry_strategy == RetryStrategy.IMMEDIATE
        ):
            confidence *= 1.2

        confidence *= SEVERITY_MULTIPLIERS[classification.severity]
        return min(1.0, max(0.1, confidence))

    def is_applicable(self, action: RecoveryAction, context: ErrorContext) -> bool:
        """Whether an action may be proposed in this context.

        Retries are exhausted at ``max_retries``; the final step of a plan is
        never skipped.
        """
        if action.type == RecoveryActionType.RETRY and context.retry_attempt >= context.max_retries:
            return False
        if action.type == RecoveryActionType.SKIP and context.step_number >= context.total_steps - 1:
            return False
        return True

    async def execute_recovery(
        self,
        action: RecoveryAction,
        context: ErrorContext,
        executor: RecoveryExecutor,
    ) -> RecoveryResult:
        """Run a recovery action through a caller-supplied executor.

        Args:
            action: Action to run
            context: Execution context
            executor: Coroutine performing the action, returning success

        Returns:
            Result with the state execution should move to next
        """
        started = time.perf_counter()

        if not self.is_applicable(action, context):
            return RecoveryResult(
                success=False,
                action=action,
                message=f"Invalid recovery action: {action.id}",
                error=f"Invalid recovery action: {action.id}",
                next_state=NextState.ABORT,
            )

        logger.info(
            "executing_recovery_action",
            action_id=action.id,
            action_type=action.type.value,
            operation=context.operation,
        )

        try:
            success = await executor(action)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error("recovery_execution_failed", action_id=action.id, error=str(e))
            self._record_breaker(context.operation_class, False)
            return RecoveryResult(
                success=False,
                action=action,
                message=f"Recovery execution failed: {e}",
                duration_ms=duration_ms,
                error=str(e),
                next_state=NextState.ABORT,
            )

        duration_ms = (time.perf_counter() - started) * 1000
        self._record_breaker(context.operation_class, success)

        next_state = _NEXT_STATES[action.type] if success else NextState.ABORT
        logger.info(
            "recovery_execution_completed",
            action_id=action.id,
            success=success,
            next_state=next_state.value,
        )
        return RecoveryResult(
            success=success,
            action=action,
            message=(
                f"Recovery action '{action.description}' completed successfully"
                if success
                else f"Recovery action '{action.description}' failed"
            ),
            duration_ms=duration_ms,
            next_state=next_state,
        )

    def analyze_error_patterns(self, operation_class: OperationClass) -> ErrorPatternReport:
        """Pattern analysis over the recorded history of an operation class."""
        return self.history.analyze(operation_class)

    def _context_actions(
        self, classification: ErrorClassification, context: ErrorContext
    ) -> list[RecoveryAction]:
        actions = []

        if classification.retry_strategy in (RetryStrategy.DELAYED, RetryStrategy.EXPONENTIAL):
            actions.append(
                RecoveryAction(
                    id="wait_and_retry",
                    type=RecoveryActionType.WAIT,
                    description="Wait before retrying",
                    params={"duration_ms": classification.estimated_recovery_ms},
                    estimated_duration_ms=classification.estimated_recovery_ms,
                    confidence=0.7,
                )
            )

        if context.retry_attempt > 2 and classification.category == ErrorCategory.TEMPORARY:
            actions.append(
                RecoveryAction(
                    id="refresh_page",
                    type=RecoveryActionType.ALTERNATIVE,
                    description="Refresh page and retry",
                    params={"preserve_state": False},
                    estimated_duration_ms=5000,
                    confidence=0.6,
                )
            )

        if classification.severity == Severity.LOW:
            actions.append(
                RecoveryAction(
                    id="skip_step",
                    type=RecoveryActionType.SKIP,
                    description="Skip current step and continue",
                    confidence=0.4,
                )
            )

        return [
            action.model_copy(
                update={"confidence": self.action_confidence(action, classification, context)}
            )
            for action in actions
        ]

    def _record_breaker(self, operation_class: OperationClass, success: bool) -> None:
        if self.breakers is None:
            return
        breaker = self.breakers.get(operation_class)
        if success:
            breaker.record_success()
        else:
            breaker.record_failure()
