"""Unit tests for the action dispatcher."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.core.errors import PermissionDeniedError
from taskpilot.core.types import (
    ActionResult,
    BreakerState,
    DispatchOptions,
    DispatchRequest,
    ErrorCategory,
    ErrorType,
    OperationClass,
)
from taskpilot.dispatcher import ActionDispatcher
from taskpilot.registry import ActionRegistry


class TestActionDispatcher:
    """Test suite for ActionDispatcher class."""

    @pytest.mark.asyncio
    async def test_dispatch_async_handler(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that an async handler's return value becomes the result data."""
        handler = AsyncMock(return_value={"title": "Example"})
        registry.register("navigate", handler)

        result = await dispatcher.dispatch("navigate", {"url": "https://example.com"})

        handler.assert_awaited_once_with({"url": "https://example.com"})
        assert result.success is True
        assert result.data == {"title": "Example"}
        assert result.error is None
        assert result.metadata["attempts"] == 1
        assert result.metadata["operation_class"] == "network"

    @pytest.mark.asyncio
    async def test_dispatch_sync_handler(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that plain functions can be registered as handlers."""
        registry.register("double", lambda params: params["x"] * 2)

        result = await dispatcher.dispatch("double", {"x": 21})

        assert result.success is True
        assert result.data == 42

    @pytest.mark.asyncio
    async def test_retries_with_linear_backoff(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry, recording_sleep
    ) -> None:
        """Test that transient failures are retried with growing delays."""
        handler = AsyncMock(side_effect=[Exception("flaky"), Exception("flaky"), "ok"])
        registry.register("flaky_op", handler)

        result = await dispatcher.dispatch("flaky_op")

        assert result.success is True
        assert result.data == "ok"
        assert handler.await_count == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert recording_sleep.total >= 3.0
        assert [r["success"] for r in result.metadata["attempt_records"]] == [
            False,
            False,
            True,
        ]

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry, recording_sleep
    ) -> None:
        """Test that a persistently failing action fails after retry_count retries."""
        handler = AsyncMock(side_effect=Exception("still broken"))
        registry.register("flaky_op", handler)

        result = await dispatcher.dispatch("flaky_op")

        assert result.success is False
        assert result.error == "still broken"
        assert handler.await_count == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert result.classification.type == ErrorType.UNKNOWN

    @pytest.mark.asyncio
    async def test_non_recoverable_error_not_retried(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry, recording_sleep
    ) -> None:
        """Test that a permission failure stops after the first attempt."""
        handler = AsyncMock(side_effect=PermissionDeniedError("blocked by policy"))
        registry.register("restricted", handler)

        result = await dispatcher.dispatch("restricted")

        assert result.success is False
        assert handler.await_count == 1
        assert recording_sleep.delays == []
        assert result.classification.type == ErrorType.PERMISSION_DENIED
        assert result.metadata["recovery_actions"] == ["request_permission"]

    @pytest.mark.asyncio
    async def test_unknown_action(self, dispatcher: ActionDispatcher) -> None:
        """Test that unknown actions fail permanently without retry."""
        result = await dispatcher.dispatch("fly_to_moon")

        assert result.success is False
        assert result.classification.type == ErrorType.UNKNOWN_ACTION
        assert result.classification.category == ErrorCategory.PERMANENT
        assert result.metadata["attempts"] == 0
        assert dispatcher.breakers.state(OperationClass.DEFAULT) == BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_invalid_params_rejected(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that a false predicate prevents the handler from running."""
        handler = AsyncMock()
        registry.register("navigate", handler, validate=lambda params: "url" in params)

        result = await dispatcher.dispatch("navigate", {})

        handler.assert_not_awaited()
        assert result.success is False
        assert result.classification.type == ErrorType.VALIDATION
        assert result.classification.recoverable is False

    @pytest.mark.asyncio
    async def test_raising_predicate_is_validation_failure(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that a predicate exception counts as invalid parameters."""
        handler = AsyncMock()
        registry.register(
            "navigate", handler, validate=lambda params: params["url"].startswith("http")
        )

        result = await dispatcher.dispatch("navigate", {})

        handler.assert_not_awaited()
        assert result.classification.type == ErrorType.VALIDATION
        assert "Invalid parameters" in result.error

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens_and_recovers(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry, clock
    ) -> None:
        """Test that repeated failures open the breaker and a trial call closes it."""
        handler = AsyncMock(side_effect=PermissionDeniedError("blocked"))
        registry.register("restricted", handler, operation_class=OperationClass.NETWORK)

        for _ in range(5):
            result = await dispatcher.dispatch("restricted")
            assert result.success is False

        assert dispatcher.breakers.state(OperationClass.NETWORK) == BreakerState.OPEN

        rejected = await dispatcher.dispatch("restricted")

        assert handler.await_count == 5
        assert rejected.success is False
        assert rejected.classification.type == ErrorType.CIRCUIT_OPEN
        assert rejected.metadata["recovery_actions"] == ["circuit_breaker_abort"]
        assert rejected.metadata["attempts"] == 0

        clock.advance(60)
        handler.side_effect = None
        handler.return_value = "ok"

        trial = await dispatcher.dispatch("restricted")

        assert trial.success is True
        assert dispatcher.breakers.state(OperationClass.NETWORK) == BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_breaker_records_once_per_dispatch(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that retried attempts count as a single breaker failure."""
        registry.register("flaky_op", AsyncMock(side_effect=Exception("flaky")))

        await dispatcher.dispatch("flaky_op")

        assert dispatcher.breakers.get(OperationClass.DEFAULT).failure_count == 1

    @pytest.mark.asyncio
    async def test_timeout_does_not_cancel_handler(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that a timed out handler keeps running after the dispatch returns."""
        finished = asyncio.Event()

        async def slow(params):
            await asyncio.sleep(0.2)
            finished.set()
            return "late"

        registry.register("slow_op", slow)

        result = await dispatcher.dispatch(
            "slow_op", options=DispatchOptions(timeout_ms=50, retry_count=0)
        )

        assert result.success is False
        assert result.classification.type == ErrorType.TIMEOUT
        assert "timed out after 50ms" in result.error
        assert not finished.is_set()

        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_timeout_retry_uses_longer_timeout(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that a timeout retry doubles the timeout for the next attempt."""
        calls = []

        async def slow(params):
            calls.append(params)
            await asyncio.sleep(0.15)
            return "done"

        registry.register("slow_op", slow)

        result = await dispatcher.dispatch(
            "slow_op", options=DispatchOptions(timeout_ms=100, retry_count=1)
        )

        assert result.success is True
        assert result.data == "done"
        assert len(calls) == 2
        assert result.metadata["attempts"] == 2

    @pytest.mark.asyncio
    async def test_failed_action_result_is_classified(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that handlers reporting failure through ActionResult are classified."""
        registry.register(
            "click_element",
            AsyncMock(return_value=ActionResult(success=False, error="Element not found")),
        )

        result = await dispatcher.dispatch(
            "click_element", options=DispatchOptions(retry_count=0)
        )

        assert result.success is False
        assert result.error == "Element not found"
        assert result.classification.type == ErrorType.TARGET_NOT_FOUND

    @pytest.mark.asyncio
    async def test_dispatch_batch_stops_on_failure(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that a failed request with stop_on_failure ends the batch."""
        registry.register("ok", AsyncMock(return_value=1))
        registry.register("restricted", AsyncMock(side_effect=PermissionDeniedError("no")))
        stop = DispatchOptions(retry_count=0, stop_on_failure=True)

        results = await dispatcher.dispatch_batch(
            [
                DispatchRequest(name="ok"),
                DispatchRequest(name="restricted", options=stop),
                DispatchRequest(name="ok"),
            ]
        )

        assert [r.success for r in results] == [True, False]

    @pytest.mark.asyncio
    async def test_dispatch_batch_continues_without_stop(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that failures do not end a batch by default."""
        registry.register("ok", AsyncMock(return_value=1))
        registry.register("restricted", AsyncMock(side_effect=PermissionDeniedError("no")))

        results = await dispatcher.dispatch_batch(
            [DispatchRequest(name="restricted"), DispatchRequest(name="ok")]
        )

        assert [r.success for r in results] == [False, True]

    @pytest.mark.asyncio
    async def test_dispatch_parallel(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that parallel dispatch returns results in request order."""

        async def delayed(params):
            await asyncio.sleep(params["delay"])
            return params["value"]

        registry.register("delayed", delayed)

        results = await dispatcher.dispatch_parallel(
            [
                DispatchRequest(name="delayed", params={"delay": 0.05, "value": "a"}),
                DispatchRequest(name="delayed", params={"delay": 0.0, "value": "b"}),
            ]
        )

        assert [r.data for r in results] == ["a", "b"]
        assert dispatcher.get_stats().total_actions == 2

    @pytest.mark.asyncio
    async def test_stats(self, dispatcher: ActionDispatcher, registry: ActionRegistry) -> None:
        """Test that statistics count one outcome per dispatch."""
        registry.register("ok", AsyncMock(return_value=1))
        registry.register("restricted", AsyncMock(side_effect=PermissionDeniedError("no")))

        await dispatcher.dispatch("ok")
        await dispatcher.dispatch("restricted")

        stats = dispatcher.get_stats()
        assert stats.total_actions == 2
        assert stats.successful_actions == 1
        assert stats.failed_actions == 1
        assert stats.average_execution_time_ms >= 0.0

        stats.total_actions = 99
        assert dispatcher.get_stats().total_actions == 2

        await dispatcher.reset_stats()
        assert dispatcher.get_stats().total_actions == 0

    @pytest.mark.asyncio
    async def test_reset_stats_waits_for_recording(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that reset_stats() does not run while an outcome is being recorded."""
        registry.register("ok", AsyncMock(return_value=1))
        await dispatcher.dispatch("ok")

        async with dispatcher._lock:
            reset = asyncio.ensure_future(dispatcher.reset_stats())
            await asyncio.sleep(0)
            assert not reset.done()
            assert dispatcher.get_stats().total_actions == 1

        await reset
        assert dispatcher.get_stats().total_actions == 0

    @pytest.mark.asyncio
    async def test_action_info(
        self, dispatcher: ActionDispatcher, registry: ActionRegistry
    ) -> None:
        """Test that action info combines registry metadata, breaker state, and metrics."""
        registry.register("navigate", AsyncMock(return_value=None), description="Go to a URL")
        await dispatcher.dispatch("navigate")

        info = dispatcher.get_action_info("navigate")

        assert info["description"] == "Go to a URL"
        assert info["operation_class"] == "network"
        assert info["breaker_state"] == "closed"
        assert info["metrics"]["executions"] == 1
        assert dispatcher.get_action_info("missing") is None
        assert dispatcher.available_actions() == ["navigate"]

    def test_default_options_from_config(self, dispatcher: ActionDispatcher) -> None:
        """Test that default options mirror the configuration."""
        options = dispatcher.default_options()

        assert options.timeout_ms == 1000
        assert options.retry_count == 2
        assert options.retry_delay_ms == 1000

    def test_uses_supplied_recovery_planner(self, registry: ActionRegistry) -> None:
        """Test that an explicit recovery planner is kept."""
        recovery = MagicMock()

        dispatcher = ActionDispatcher(registry, recovery=recovery)

        assert dispatcher.recovery is recovery
