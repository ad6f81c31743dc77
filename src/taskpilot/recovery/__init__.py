"""Recovery module - Error classification, circuit breaking, and recovery planning."""

from .circuit_breaker import (
    BreakerSettings,
    CircuitBreaker,
    CircuitBreakerRegistry,
    operation_class_for,
)
from .classifier import DEFAULT_RULES, ClassificationRule, ErrorClassifier
from .history import ErrorHistory
from .planner import RecoveryPlanner

__all__ = [
    "BreakerSettings",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "operation_class_for",
    "DEFAULT_RULES",
    "ClassificationRule",
    "ErrorClassifier",
    "ErrorHistory",
    "RecoveryPlanner",
]
