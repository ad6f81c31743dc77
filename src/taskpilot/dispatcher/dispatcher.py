"""Action Dispatcher - Timed, retried, breaker-guarded action execution."""

import asyncio
import inspect
import time
from functools import partial
from typing import Any, Awaitable, Callable

import structlog

from taskpilot.core.config import Config
from taskpilot.core.errors import (
    ActionFailedError,
    ActionTimeoutError,
    ParameterValidationError,
    UnknownActionError,
)
from taskpilot.core.types import (
    ActionResult,
    AttemptRecord,
    DispatchOptions,
    DispatchRequest,
    ErrorContext,
    ExecutionStats,
    OperationClass,
    RecoveryActionType,
    RecoveryDecision,
)
from taskpilot.recovery import (
    CircuitBreakerRegistry,
    ErrorClassifier,
    RecoveryPlanner,
    operation_class_for,
)
from taskpilot.registry import ActionHandler, ActionRegistry


logger = structlog.get_logger()


_STOP_ACTIONS = (RecoveryActionType.ABORT, RecoveryActionType.ESCALATE)


class ActionDispatcher:
    """Executes registered actions with timeout, retry, and circuit breaking.

    The breaker registry and the execution statistics are shared by every
    dispatch on this instance, and therefore across tasks. Their updates
    are applied under one lock, once per dispatch.

    A handler that exceeds its timeout is NOT cancelled. The dispatch
    reports a timeout while the handler keeps running; whatever it does
    afterwards still happens and its late result is only logged.
    """

    def __init__(
        self,
        registry: ActionRegistry,
        config: Config | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        classifier: ErrorClassifier | None = None,
        recovery: RecoveryPlanner | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Registry of dispatchable actions
            config: Application configuration
            breakers: Circuit breakers per operation class
            classifier: Error classifier
            recovery: Recovery planner; built from the other collaborators if omitted
            sleep: Coroutine used for backoff delays (seconds)
        """
        self.registry = registry
        self.config = config or Config()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.classifier = classifier or ErrorClassifier()
        self.recovery = recovery or RecoveryPlanner(
            config=self.config, classifier=self.classifier, breakers=self.breakers
        )
        self._sleep = sleep or asyncio.sleep
        self._stats = ExecutionStats()
        self._lock = asyncio.Lock()

    def default_options(self) -> DispatchOptions:
        """Dispatch options taken from the configuration."""
        return DispatchOptions(
            timeout_ms=self.config.action_timeout_ms,
            retry_count=self.config.retry_count,
            retry_delay_ms=self.config.retry_delay_ms,
        )

    async def dispatch(
        self,
        action_name: str,
        params: dict[str, Any] | None = None,
        options: DispatchOptions | None = None,
    ) -> ActionResult:
        """Execute one action.

        Args:
            action_name: Registered action name
            params: Action parameters
            options: Timeout and retry settings; defaults from config

        Returns:
            Final result aggregated over all attempts
        """
        params = params if params is not None else {}
        options = options or self.default_options()
        started = time.perf_counter()

        handler = self.registry.get(action_name)
        if handler is None:
            return await self._reject(
                action_name,
                UnknownActionError(action_name),
                operation_class_for(action_name),
                started,
            )

        operation_class = handler.operation_class or operation_class_for(action_name)

        invalid = self._check_params(handler, params)
        if invalid is not None:
            return await self._reject(action_name, invalid, operation_class, started)

        breaker = self.breakers.get(operation_class)
        max_attempts = options.retry_count + 1
        timeout_ms = options.timeout_ms
        attempts: list[AttemptRecord] = []
        decision: RecoveryDecision | None = None
        error: BaseException | None = None

        logger.info(
            "dispatching_action",
            action=action_name,
            operation_class=operation_class.value,
            max_attempts=max_attempts,
        )

        for attempt in range(1, max_attempts + 1):
            if not breaker.allow_request():
                context = self._error_context(action_name, operation_class, attempt, options)
                decision = self.recovery.circuit_open(context)
                logger.warning(
                    "dispatch_rejected_circuit_open",
                    action=action_name,
                    operation_class=operation_class.value,
                    attempt=attempt,
                )
                return await self._finish(
                    action_name,
                    operation_class,
                    started,
                    attempts,
                    success=False,
                    error=decision.classification.technical_details,
                    decision=decision,
                    record_breaker=False,
                )

            attempt_started = time.perf_counter()
            try:
                data = await self._invoke(handler, params, timeout_ms)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
            else:
                duration_ms = (time.perf_counter() - attempt_started) * 1000
                attempts.append(
                    AttemptRecord(attempt=attempt, success=True, duration_ms=duration_ms)
                )
                return await self._finish(
                    action_name, operation_class, started, attempts, success=True, data=data
                )

            duration_ms = (time.perf_counter() - attempt_started) * 1000
            attempts.append(
                AttemptRecord(
                    attempt=attempt, success=False, duration_ms=duration_ms, error=str(error)
                )
            )

            context = self._error_context(action_name, operation_class, attempt, options)
            decision = self.recovery.handle_error(error, context)
            top = decision.top_action

            if (
                not decision.classification.recoverable
                or attempt >= max_attempts
                or (top is not None and top.type in _STOP_ACTIONS)
            ):
                break

            if top is not None and "timeout_multiplier" in top.params:
                timeout_ms = int(timeout_ms * top.params["timeout_multiplier"])

            delay = options.retry_delay_ms * attempt / 1000
            logger.info(
                "retrying_action",
                action=action_name,
                attempt=attempt,
                delay_seconds=delay,
                error_type=decision.classification.type.value,
                recovery_action=top.id if top else None,
            )
            await self._sleep(delay)

        return await self._finish(
            action_name,
            operation_class,
            started,
            attempts,
            success=False,
            error=str(error),
            decision=decision,
        )

    async def dispatch_batch(self, requests: list[DispatchRequest]) -> list[ActionResult]:
        """Dispatch actions one after another.

        A failed request whose options set ``stop_on_failure`` ends the batch.

        Args:
            requests: Actions to dispatch in order

        Returns:
            Results of the dispatched actions
        """
        results = []
        for request in requests:
            result = await self.dispatch(request.name, request.params, request.options)
            results.append(result)

            if not result.success and request.options and request.options.stop_on_failure:
                logger.info("batch_stopped", action=request.name, completed=len(results))
                break
        return results

    async def dispatch_parallel(self, requests: list[DispatchRequest]) -> list[ActionResult]:
        """Dispatch independent actions concurrently.

        Args:
            requests: Actions with no ordering dependency on each other

        Returns:
            Results in request order
        """
        return list(
            await asyncio.gather(
                *(self.dispatch(request.name, request.params, request.options) for request in requests)
            )
        )

    def get_stats(self) -> ExecutionStats:
        """Get a copy of the execution statistics."""
        return self._stats.model_copy()

    async def reset_stats(self) -> None:
        """Clear the execution statistics.

        Takes the same lock as outcome recording, so a dispatch settling
        concurrently is either fully counted before the reset or after it.
        """
        async with self._lock:
            self._stats = ExecutionStats()

    def available_actions(self) -> list[str]:
        """Names of dispatchable actions."""
        return self.registry.list_actions()

    def get_action_info(self, action_name: str) -> dict[str, Any] | None:
        """Describe one action together with its metrics."""
        handler = self.registry.get(action_name)
        if handler is None:
            return None

        metrics = self.registry.get_metrics(action_name)
        operation_class = handler.operation_class or operation_class_for(action_name)
        return {
            "name": handler.name,
            "description": handler.description,
            "risk_tier": handler.risk_tier.value,
            "category": handler.category,
            "operation_class": operation_class.value,
            "breaker_state": self.breakers.state(operation_class).value,
            "metrics": metrics.model_dump() if metrics else None,
        }

    def _check_params(
        self, handler: ActionHandler, params: dict[str, Any]
    ) -> ParameterValidationError | None:
        try:
            valid = handler.validate_params(params)
        except Exception as e:
            return ParameterValidationError(
                f"Invalid parameters for action {handler.name}: {e}"
            )
        if not valid:
            return ParameterValidationError(f"Invalid parameters for action {handler.name}")
        return None

    async def _invoke(
        self, handler: ActionHandler, params: dict[str, Any], timeout_ms: int
    ) -> Any:
        task = asyncio.ensure_future(self._call(handler, params))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            task.add_done_callback(partial(_log_late_result, handler.name))
            raise ActionTimeoutError(handler.name, timeout_ms) from None
        except asyncio.CancelledError:
            task.add_done_callback(partial(_log_late_result, handler.name))
            raise

    async def _call(self, handler: ActionHandler, params: dict[str, Any]) -> Any:
        result = handler.invoke(params)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, ActionResult):
            if not result.success:
                raise ActionFailedError(result.error or f"Action {handler.name} failed")
            return result.data
        return result

    def _error_context(
        self,
        action_name: str,
        operation_class: OperationClass,
        attempt: int,
        options: DispatchOptions,
    ) -> ErrorContext:
        return ErrorContext(
            operation=action_name,
            operation_class=operation_class,
            retry_attempt=attempt - 1,
            max_retries=options.retry_count,
        )

    async def _reject(
        self,
        action_name: str,
        error: Exception,
        operation_class: OperationClass,
        started: float,
    ) -> ActionResult:
        """Fail without invoking the handler; no retry and no breaker update."""
        context = ErrorContext(operation=action_name, operation_class=operation_class)
        decision = self.recovery.handle_error(error, context)
        logger.warning("dispatch_rejected", action=action_name, error=str(error))
        return await self._finish(
            action_name,
            operation_class,
            started,
            [],
            success=False,
            error=str(error),
            decision=decision,
            record_breaker=False,
        )

    async def _finish(
        self,
        action_name: str,
        operation_class: OperationClass,
        started: float,
        attempts: list[AttemptRecord],
        success: bool,
        data: Any = None,
        error: str | None = None,
        decision: RecoveryDecision | None = None,
        record_breaker: bool = True,
    ) -> ActionResult:
        duration_ms = (time.perf_counter() - started) * 1000

        async with self._lock:
            if record_breaker:
                breaker = self.breakers.get(operation_class)
                if success:
                    breaker.record_success()
                else:
                    breaker.record_failure()
            self._record_stats(success, duration_ms)
            self.registry.record_execution(action_name, success, duration_ms)

        metadata: dict[str, Any] = {
            "action": action_name,
            "attempts": len(attempts),
            "attempt_records": [record.model_dump() for record in attempts],
            "operation_class": operation_class.value,
        }
        if decision is not None:
            metadata["recovery_actions"] = [action.id for action in decision.actions]

        if success:
            logger.info(
                "action_completed",
                action=action_name,
                attempts=len(attempts),
                duration_ms=round(duration_ms, 1),
            )
        else:
            logger.warning(
                "action_failed",
                action=action_name,
                attempts=len(attempts),
                error=error,
                error_type=decision.classification.type.value if decision else None,
            )

        return ActionResult(
            success=success,
            data=data,
            error=error,
            duration_ms=duration_ms,
            metadata=metadata,
            classification=decision.classification if decision else None,
        )

    def _record_stats(self, success: bool, duration_ms: float) -> None:
        stats = self._stats
        stats.total_actions += 1
        if success:
            stats.successful_actions += 1
        else:
            stats.failed_actions += 1
        stats.average_execution_time_ms = (
            stats.average_execution_time_ms * (stats.total_actions - 1) + duration_ms
        ) / stats.total_actions


def _log_late_result(action_name: str, task: "asyncio.Future[Any]") -> None:
    """Log the outcome of a handler that settled after its dispatch gave up."""
    if task.cancelled():
        logger.info("late_action_result", action=action_name, cancelled=True)
        return

    error = task.exception()
    logger.info(
        "late_action_result",
        action=action_name,
        success=error is None,
        error=str(error) if error else None,
    )
