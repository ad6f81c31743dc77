"""Error Classifier - Ordered rule table mapping raw failures to classifications.

Classification is a pure function of ``(error, context)``: the same pair
always yields the same ``ErrorClassification``. Rules are checked in
order; typed exceptions are matched before message patterns, and the
first matching rule wins. Unmatched errors fall back to
``{medium, retriable, recoverable, delayed}``.
"""

import asyncio
from typing import Callable, NamedTuple

from taskpilot.core.errors import (
    ActionTimeoutError,
    CircuitOpenError,
    HostApiError,
    ParameterValidationError,
    PermissionDeniedError,
    ScriptExecutionError,
    TargetNotFoundError,
    UnknownActionError,
)
from taskpilot.core.types import (
    ErrorCategory,
    ErrorClassification,
    ErrorContext,
    ErrorType,
    RetryStrategy,
    Severity,
)


ErrorPredicate = Callable[[BaseException, str, ErrorContext | None], bool]
ClassificationBuilder = Callable[[BaseException, str], ErrorClassification]


class ClassificationRule(NamedTuple):
    """One ``(predicate, classification)`` pair of the rule table."""

    name: str
    matches: ErrorPredicate
    build: ClassificationBuilder


def _message_contains(*needles: str) -> ErrorPredicate:
    def predicate(error: BaseException, message: str, context: ErrorContext | None) -> bool:
        return any(needle in message for needle in needles)

    return predicate


def _is_instance(*types: type[BaseException]) -> ErrorPredicate:
    def predicate(error: BaseException, message: str, context: ErrorContext | None) -> bool:
        return isinstance(error, types)

    return predicate


def _timeout(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.TIMEOUT,
        severity=Severity.MEDIUM,
        category=ErrorCategory.TEMPORARY,
        recoverable=True,
        retry_strategy=RetryStrategy.EXPONENTIAL,
        estimated_recovery_ms=5000,
        user_message="Operation timed out, retrying...",
        technical_details=f"Timeout error: {error}",
    )


def _permission_denied(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.PERMISSION_DENIED,
        severity=Severity.HIGH,
        category=ErrorCategory.USER_ACTION,
        recoverable=False,
        retry_strategy=RetryStrategy.ESCALATE,
        estimated_recovery_ms=0,
        user_message="Permission denied. Please check the required permissions.",
        technical_details=f"Permission error: {error}",
    )


def _network(error: BaseException, message: str) -> ErrorClassification:
    if "timeout" in message:
        return _timeout(error, message)

    if "offline" in message or "disconnected" in message:
        return ErrorClassification(
            type=ErrorType.NETWORK,
            severity=Severity.HIGH,
            category=ErrorCategory.USER_ACTION,
            recoverable=False,
            retry_strategy=RetryStrategy.ESCALATE,
            estimated_recovery_ms=0,
            user_message="Network connection lost. Please check your internet connection.",
            technical_details=f"Network offline: {error}",
        )

    return ErrorClassification(
        type=ErrorType.NETWORK,
        severity=Severity.MEDIUM,
        category=ErrorCategory.TEMPORARY,
        recoverable=True,
        retry_strategy=RetryStrategy.EXPONENTIAL,
        estimated_recovery_ms=3000,
        user_message="Network error, retrying...",
        technical_details=f"Network error: {error}",
    )


def _target_not_found(error: BaseException, message: str) -> ErrorClassification:
    if (
        isinstance(error, TargetNotFoundError)
        or "not found" in message
        or "does not exist" in message
    ):
        return ErrorClassification(
            type=ErrorType.TARGET_NOT_FOUND,
            severity=Severity.MEDIUM,
            category=ErrorCategory.RECOVERABLE,
            recoverable=True,
            retry_strategy=RetryStrategy.ALTERNATIVE,
            estimated_recovery_ms=2000,
            user_message="Element not found, trying alternative approach...",
            technical_details=f"Element not found: {error}",
        )

    return ErrorClassification(
        type=ErrorType.TARGET_NOT_FOUND,
        severity=Severity.MEDIUM,
        category=ErrorCategory.RETRIABLE,
        recoverable=True,
        retry_strategy=RetryStrategy.DELAYED,
        estimated_recovery_ms=1000,
        user_message="Element interaction failed, retrying...",
        technical_details=f"Element error: {error}",
    )


def _host_api(error: BaseException, message: str) -> ErrorClassification:
    if "permission" in message or "access" in message:
        return _permission_denied(error, message)

    if "not available" in message or "not supported" in message:
        return ErrorClassification(
            type=ErrorType.HOST_API,
            severity=Severity.HIGH,
            category=ErrorCategory.PERMANENT,
            recoverable=False,
            retry_strategy=RetryStrategy.ABORT,
            estimated_recovery_ms=0,
            user_message="Browser API not available in current environment.",
            technical_details=f"Host API error: {error}",
        )

    return ErrorClassification(
        type=ErrorType.HOST_API,
        severity=Severity.MEDIUM,
        category=ErrorCategory.TEMPORARY,
        recoverable=True,
        retry_strategy=RetryStrategy.DELAYED,
        estimated_recovery_ms=2000,
        user_message="Browser API error, retrying...",
        technical_details=f"Host API error: {error}",
    )


def _script_execution(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.SCRIPT_EXECUTION,
        severity=Severity.MEDIUM,
        category=ErrorCategory.RETRIABLE,
        recoverable=True,
        retry_strategy=RetryStrategy.DELAYED,
        estimated_recovery_ms=3000,
        user_message="Script execution failed, retrying...",
        technical_details=f"Script error: {error}",
    )


def _validation(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.VALIDATION,
        severity=Severity.MEDIUM,
        category=ErrorCategory.PERMANENT,
        recoverable=False,
        retry_strategy=RetryStrategy.ABORT,
        estimated_recovery_ms=0,
        user_message="The action was called with invalid parameters.",
        technical_details=f"Validation error: {error}",
    )


def _unknown_action(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.UNKNOWN_ACTION,
        severity=Severity.HIGH,
        category=ErrorCategory.PERMANENT,
        recoverable=False,
        retry_strategy=RetryStrategy.ABORT,
        estimated_recovery_ms=0,
        user_message="The requested action is not available.",
        technical_details=str(error),
    )


def _circuit_open(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.CIRCUIT_OPEN,
        severity=Severity.CRITICAL,
        category=ErrorCategory.PERMANENT,
        recoverable=False,
        retry_strategy=RetryStrategy.ABORT,
        estimated_recovery_ms=0,
        user_message="Service temporarily unavailable due to repeated failures",
        technical_details=str(error),
    )


def _unknown(error: BaseException, message: str) -> ErrorClassification:
    return ErrorClassification(
        type=ErrorType.UNKNOWN,
        severity=Severity.MEDIUM,
        category=ErrorCategory.RETRIABLE,
        recoverable=True,
        retry_strategy=RetryStrategy.DELAYED,
        estimated_recovery_ms=2000,
        user_message="An error occurred, attempting to recover...",
        technical_details=f"Unknown error: {error}",
    )


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    # Typed failures raised by the dispatcher and action handlers
    ClassificationRule("unknown_action", _is_instance(UnknownActionError), _unknown_action),
    ClassificationRule("circuit_open", _is_instance(CircuitOpenError), _circuit_open),
    ClassificationRule("invalid_parameters", _is_instance(ParameterValidationError), _validation),
    ClassificationRule(
        "timeout", _is_instance(ActionTimeoutError, asyncio.TimeoutError, TimeoutError), _timeout
    ),
    ClassificationRule(
        "permission", _is_instance(PermissionDeniedError, PermissionError), _permission_denied
    ),
    ClassificationRule("target_not_found", _is_instance(TargetNotFoundError), _target_not_found),
    ClassificationRule("host_api", _is_instance(HostApiError), _host_api),
    ClassificationRule("script_execution", _is_instance(ScriptExecutionError), _script_execution),
    ClassificationRule("connection", _is_instance(ConnectionError), _network),
    # Message patterns
    ClassificationRule(
        "network", _message_contains("network", "fetch", "connection", "timeout"), _network
    ),
    ClassificationRule(
        "element",
        _message_contains("element", "selector", "not found", "does not exist"),
        _target_not_found,
    ),
    ClassificationRule(
        "permission_message", _message_contains("permission", "denied", "access"), _permission_denied
    ),
    ClassificationRule(
        "host_api_message", _message_contains("browser", "chrome", "extension", "host api"), _host_api
    ),
    ClassificationRule(
        "script_message", _message_contains("script", "javascript", "execution"), _script_execution
    ),
    ClassificationRule("timeout_message", _message_contains("time out", "timed out"), _timeout),
    ClassificationRule("validation_message", _message_contains("validation", "invalid"), _validation),
)


class ErrorClassifier:
    """Turns raw failures into structured classifications.

    Stateless: there are no counters or caches, so classifying the same
    ``(error, context)`` twice yields the same result.
    """

    def __init__(self, rules: tuple[ClassificationRule, ...] | None = None) -> None:
        """Initialize the classifier.

        Args:
            rules: Ordered rule table; defaults to ``DEFAULT_RULES``
        """
        self.rules = rules if rules is not None else DEFAULT_RULES

    def classify(
        self, error: BaseException | str, context: ErrorContext | None = None
    ) -> ErrorClassification:
        """Classify a failure.

        Args:
            error: Exception or plain error message
            context: Execution context of the failure

        Returns:
            Classification from the first matching rule
        """
        if isinstance(error, str):
            error = Exception(error)
        message = str(error).lower()

        for rule in self.rules:
            if rule.matches(error, message, context):
                return rule.build(error, message)

        return _unknown(error, message)

    def matching_rule(
        self, error: BaseException | str, context: ErrorContext | None = None
    ) -> str | None:
        """Name of the first rule matching a failure, for diagnostics."""
        if isinstance(error, str):
            error = Exception(error)
        message = str(error).lower()

        for rule in self.rules:
            if rule.matches(error, message, context):
                return rule.name
        return None
