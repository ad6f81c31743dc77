"""Bounded per-operation-class error history used for pattern analysis only."""

import time
from collections import Counter, deque
from typing import Callable

from pydantic import BaseModel

from taskpilot.core.types import (
    ErrorClassification,
    ErrorPatternReport,
    ErrorType,
    OperationClass,
)


class HistoryEntry(BaseModel):
    """A stored classification with the time it was recorded."""

    classification: ErrorClassification
    timestamp: float


_TYPE_RECOMMENDATIONS: dict[ErrorType, str] = {
    ErrorType.NETWORK: "Frequent network errors. Consider implementing offline support.",
    ErrorType.TARGET_NOT_FOUND: "Frequent element not found errors. Improve element selection strategy.",
    ErrorType.TIMEOUT: "Frequent timeout errors. Increase timeout values or optimize performance.",
}


class ErrorHistory:
    """Ring buffer of classifications per operation class."""

    def __init__(self, max_entries: int = 50, clock: Callable[[], float] = time.time) -> None:
        """Initialize the history.

        Args:
            max_entries: Entries kept per operation class
            clock: Wall-clock time source in seconds
        """
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[OperationClass, deque[HistoryEntry]] = {}

    def record(self, operation_class: OperationClass, classification: ErrorClassification) -> None:
        """Append a classification, evicting the oldest past capacity."""
        buffer = self._entries.setdefault(operation_class, deque(maxlen=self.max_entries))
        buffer.append(HistoryEntry(classification=classification, timestamp=self._clock()))

    def entries(self, operation_class: OperationClass) -> list[HistoryEntry]:
        """Get the stored entries for an operation class, oldest first."""
        return list(self._entries.get(operation_class, ()))

    def clear(self) -> None:
        self._entries.clear()

    def analyze(self, operation_class: OperationClass) -> ErrorPatternReport:
        """Summarize the stored errors of one operation class.

        Args:
            operation_class: Operation class to analyze

        Returns:
            Frequency, dominant error types, and recommendations
        """
        history = self.entries(operation_class)
        if not history:
            return ErrorPatternReport(
                error_frequency=0.0,
                common_error_types=[],
                average_recovery_ms=0.0,
                success_rate=1.0,
                recommendations=["No error history available"],
            )

        span_seconds = self._clock() - min(entry.timestamp for entry in history)
        hours = max(span_seconds / 3600, 1)
        error_frequency = len(history) / hours

        type_counts = Counter(entry.classification.type for entry in history)
        common_error_types = [error_type for error_type, _ in type_counts.most_common(3)]

        average_recovery_ms = sum(
            entry.classification.estimated_recovery_ms for entry in history
        ) / len(history)

        recoverable = sum(1 for entry in history if entry.classification.recoverable)
        success_rate = recoverable / len(history)

        recommendations = []
        if error_frequency > 10:
            recommendations.append(
                "High error frequency detected. Consider implementing more robust error handling."
            )
        if success_rate < 0.5:
            recommendations.append(
                "Low recovery success rate. Review and improve recovery strategies."
            )
        for error_type in common_error_types:
            if error_type in _TYPE_RECOMMENDATIONS:
                recommendations.append(_TYPE_RECOMMENDATIONS[error_type])

        return ErrorPatternReport(
            error_frequency=error_frequency,
            common_error_types=common_error_types,
            average_recovery_ms=average_recovery_ms,
            success_rate=success_rate,
            recommendations=recommendations,
        )
