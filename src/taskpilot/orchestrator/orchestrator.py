"""Orchestrator - Plan, dispatch, validate, and replan until a task terminates."""

import asyncio
import inspect
import time
import uuid
from collections import defaultdict
from typing import Any, Callable

import structlog

from taskpilot.core.config import Config
from taskpilot.core.errors import TaskInProgressError
from taskpilot.core.interfaces import PlanningCollaborator, ValidationCollaborator
from taskpilot.core.types import (
    ActionResult,
    AgentExecutionState,
    AgentStatus,
    OrchestratorStatus,
    PlanningContext,
    PlanStep,
    StepRecord,
    TaskOptions,
    TaskOutcome,
    TaskPlan,
    TaskResult,
)
from taskpilot.dispatcher import ActionDispatcher


logger = structlog.get_logger()


EVENTS = ("plan_created", "step_completed", "step_failed", "task_completed")

DONE_ACTION = "done"

EventHandler = Callable[..., Any]


class _TaskRun:
    """Everything owned by one task; discarded when the task ends."""

    def __init__(self, task_id: str, instruction: str, options: TaskOptions) -> None:
        self.task_id = task_id
        self.instruction = instruction
        self.options = options
        self.state = AgentExecutionState(
            max_steps=options.max_steps, max_errors=options.max_errors
        )
        self.plan: TaskPlan | None = None
        self.completed: list[str] = []
        self.history: list[StepRecord] = []
        self.last_error: str | None = None
        self.last_data: Any = None
        self.last_failed = False
        self.needs_plan = True
        self.planned_at_step = -1
        self.replans = 0
        self.started = time.perf_counter()

    def is_completed(self, step_id: str) -> bool:
        return step_id in self.completed

    def mark_completed(self, step_id: str) -> None:
        if step_id not in self.completed:
            self.completed.append(step_id)


class TaskOrchestrator:
    """Top-level state machine driving one task at a time.

    idle -> planning -> executing -> (validating) -> completed | error.
    Planning reruns on the first step, every ``replan_interval`` steps, and
    right after a failed step. Cancellation and pause are cooperative and
    checked between steps; an action already in flight is never interrupted.
    """

    def __init__(
        self,
        planner: PlanningCollaborator,
        dispatcher: ActionDispatcher,
        validator: ValidationCollaborator | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            planner: Planning collaborator producing task plans
            dispatcher: Action dispatcher used for every plan step
            validator: Optional validation collaborator
            config: Application configuration
        """
        self.config = config or Config()
        self.planner = planner
        self.dispatcher = dispatcher
        self.validator = validator

        self._run: _TaskRun | None = None
        self._state = AgentExecutionState(
            max_steps=self.config.max_steps, max_errors=self.config.max_errors
        )
        self._resume = asyncio.Event()
        self._resume.set()
        self._stop_requested = False
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    @property
    def state(self) -> AgentExecutionState:
        """Execution state of the current (or most recent) task."""
        return self._state

    def on(self, event: str, handler: EventHandler) -> None:
        """Subscribe to an orchestrator event.

        Args:
            event: One of plan_created, step_completed, step_failed, task_completed
            handler: Callable (sync or async) receiving the event payload

        Raises:
            ValueError: If the event name is unknown
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._handlers[event].append(handler)

    async def execute_task(
        self,
        instruction: str,
        task_id: str | None = None,
        options: TaskOptions | None = None,
    ) -> TaskResult:
        """Execute a natural language task.

        Args:
            instruction: Natural language goal
            task_id: Caller-supplied id; generated when omitted
            options: Step/error bounds and feature switches

        Returns:
            Aggregated task result

        Raises:
            TaskInProgressError: If another task is running on this orchestrator
        """
        if self._run is not None:
            raise TaskInProgressError(
                f"Task {self._run.task_id} is already running"
            )

        options = options or TaskOptions(
            max_steps=self.config.max_steps, max_errors=self.config.max_errors
        )
        run = _TaskRun(task_id or str(uuid.uuid4()), instruction, options)
        self._run = run
        self._state = run.state
        self._stop_requested = False
        self._resume.set()

        logger.info(
            "task_received",
            task_id=run.task_id,
            instruction=instruction,
            max_steps=options.max_steps,
            max_errors=options.max_errors,
        )

        try:
            result = await self._execute(run)
        finally:
            self._run = None
            self._stop_requested = False
            self._resume.set()

        await self._emit("task_completed", result)
        return result

    def pause(self) -> None:
        """Pause before the next step."""
        if self._run is not None:
            self._resume.clear()
            logger.info("task_paused", task_id=self._run.task_id)

    def resume(self) -> None:
        """Resume a paused task."""
        if not self._resume.is_set():
            self._resume.set()
            logger.info("task_resumed")

    def stop(self) -> None:
        """Request cancellation; honored at the next checkpoint."""
        if self._run is not None:
            self._stop_requested = True
            self._resume.set()
            logger.info("task_stop_requested", task_id=self._run.task_id)

    def get_status(self) -> OrchestratorStatus:
        return OrchestratorStatus(
            is_running=self._run is not None,
            current_task_id=self._run.task_id if self._run else None,
            is_paused=not self._resume.is_set(),
        )

    async def _execute(self, run: _TaskRun) -> TaskResult:
        state = run.state

        while True:
            await self._resume.wait()
            if self._stop_requested:
                return self._cancelled(run)

            if state.step_count >= state.max_steps:
                state.status = AgentStatus.IDLE
                logger.warning(
                    "max_steps_reached", task_id=run.task_id, steps=state.step_count
                )
                return self._result(
                    run,
                    TaskOutcome.PARTIAL,
                    error=f"Task incomplete after {state.step_count} steps",
                    max_steps_reached=True,
                )

            if state.enforce_limits():
                return self._result(run, TaskOutcome.FAILED, error="Execution limits exceeded")

            if self._should_plan(run):
                failure = await self._plan(run)
                if failure is not None:
                    return failure
                continue

            step_index, step = self._next_ready_step(run)
            if step is None:
                if all(run.is_completed(s.id) for s in run.plan.steps):
                    outcome = await self._validate(run)
                    if outcome is not None:
                        return outcome
                    continue

                state.status = AgentStatus.ERROR
                pending = [s.id for s in run.plan.steps if not run.is_completed(s.id)]
                logger.error("no_ready_step", task_id=run.task_id, pending=pending)
                return self._result(
                    run,
                    TaskOutcome.FAILED,
                    error=f"No executable step; unmet dependencies for {pending}",
                )

            state.status = AgentStatus.EXECUTING
            result = await self._dispatch(run, step_index, step)

            if result.success:
                run.mark_completed(step.id)
                run.last_failed = False
                run.last_data = result.data
                await self._emit("step_completed", step, result)

                if self._signals_completion(step, result):
                    outcome = await self._validate(run)
                    if outcome is not None:
                        return outcome
                continue

            failure = await self._handle_step_failure(run, step, result)
            if failure is not None:
                return failure

    def _should_plan(self, run: _TaskRun) -> bool:
        if run.needs_plan or run.plan is None:
            return True
        if not run.options.enable_replanning:
            return False
        if run.planned_at_step == run.state.step_count:
            return False
        if run.last_failed:
            return True
        return run.state.step_count % self.config.replan_interval == 0

    async def _plan(self, run: _TaskRun) -> TaskResult | None:
        state = run.state
        state.status = AgentStatus.PLANNING
        context = PlanningContext(
            task_id=run.task_id,
            step_index=state.step_count,
            completed_step_ids=list(run.completed),
            history=list(run.history),
            last_error=run.last_error,
            available_actions=self.dispatcher.registry.describe(),
        )

        logger.info(
            "planning",
            task_id=run.task_id,
            step_index=state.step_count,
            replan=run.plan is not None,
        )

        try:
            plan = await asyncio.wait_for(
                self.planner.plan(run.instruction, context),
                timeout=self.config.planning_timeout,
            )
        except asyncio.TimeoutError:
            state.status = AgentStatus.ERROR
            logger.error("planning_timeout", task_id=run.task_id)
            return self._result(
                run,
                TaskOutcome.FAILED,
                error=f"Planning timed out after {self.config.planning_timeout}s",
            )
        except Exception as e:
            state.status = AgentStatus.ERROR
            logger.error("planning_failed", task_id=run.task_id, error=str(e))
            return self._result(run, TaskOutcome.FAILED, error=f"Planning failed: {e}")

        if plan is None or not plan.steps:
            state.status = AgentStatus.ERROR
            logger.error("empty_plan", task_id=run.task_id)
            return self._result(run, TaskOutcome.FAILED, error="Planner returned an empty plan")

        if run.plan is not None:
            run.replans += 1
        run.plan = plan
        run.needs_plan = False
        run.last_failed = False
        run.planned_at_step = state.step_count
        state.status = AgentStatus.EXECUTING

        logger.info(
            "plan_created",
            task_id=run.task_id,
            plan_id=plan.id,
            steps=len(plan.steps),
            step_list=[f"{s.id}: {s.type} - {s.description}" for s in plan.steps],
        )
        await self._emit("plan_created", plan)
        return None

    def _next_ready_step(self, run: _TaskRun) -> tuple[int, PlanStep | None]:
        """First pending step whose dependencies have all completed."""
        for index, step in enumerate(run.plan.steps):
            if run.is_completed(step.id):
                continue
            if all(run.is_completed(dependency) for dependency in step.dependencies):
                return index, step
        return -1, None

    async def _dispatch(self, run: _TaskRun, step_index: int, step: PlanStep) -> ActionResult:
        logger.info(
            "executing_step",
            task_id=run.task_id,
            step=step.id,
            action=step.type,
            description=step.description,
            step_count=run.state.step_count + 1,
        )

        defaults = self.dispatcher.default_options()
        options = defaults.model_copy(
            update={
                "timeout_ms": step.timeout_ms if step.timeout_ms is not None else defaults.timeout_ms,
                "retry_count": step.retries if step.retries is not None else defaults.retry_count,
            }
        )
        result = await self.dispatcher.dispatch(step.type, dict(step.parameters), options)

        run.state.step_count += 1
        run.history.append(
            StepRecord(
                step_id=step.id,
                step_index=step_index,
                action=step.type,
                description=step.description,
                success=result.success,
                error=result.error,
                data=result.data,
                duration_ms=result.duration_ms,
            )
        )
        return result

    async def _handle_step_failure(
        self, run: _TaskRun, step: PlanStep, result: ActionResult
    ) -> TaskResult | None:
        state = run.state
        state.error_count += 1
        classification = result.classification
        run.last_error = (
            classification.user_message if classification and classification.user_message
            else result.error
        )
        run.last_failed = True

        logger.warning(
            "step_failed",
            task_id=run.task_id,
            step=step.id,
            error=result.error,
            error_type=classification.type.value if classification else None,
            error_count=state.error_count,
            max_errors=state.max_errors,
        )
        await self._emit("step_failed", step, result)

        if classification is not None and not classification.recoverable:
            state.status = AgentStatus.ERROR
            return self._result(
                run, TaskOutcome.FAILED, error=run.last_error, failed_step=step.id
            )

        if state.error_count >= state.max_errors:
            state.status = AgentStatus.ERROR
            logger.error("max_errors_reached", task_id=run.task_id, errors=state.error_count)
            return self._result(
                run, TaskOutcome.FAILED, error=run.last_error, failed_step=step.id
            )

        if not step.required:
            logger.info("optional_step_skipped", task_id=run.task_id, step=step.id)
            run.mark_completed(step.id)

        return None

    def _signals_completion(self, step: PlanStep, result: ActionResult) -> bool:
        if step.type == DONE_ACTION:
            return True

        threshold = self.config.validation_confidence_threshold
        for source in (result.metadata, result.data):
            if not isinstance(source, dict):
                continue
            if source.get("is_done"):
                return True
            confidence = source.get("confidence")
            if isinstance(confidence, (int, float)) and confidence > threshold:
                return True
        return False

    async def _validate(self, run: _TaskRun) -> TaskResult | None:
        """Validate completion; None means execution continues."""
        state = run.state
        if self._stop_requested:
            return self._cancelled(run)

        if not run.options.enable_validation or self.validator is None:
            state.status = AgentStatus.COMPLETED
            logger.info("task_completed", task_id=run.task_id, validated=False)
            return self._result(run, TaskOutcome.SUCCESS, confidence=1.0)

        state.status = AgentStatus.VALIDATING
        logger.info("validating_task", task_id=run.task_id, steps=state.step_count)

        try:
            verdict = await self.validator.validate(run.instruction, list(run.history))
        except Exception as e:
            state.status = AgentStatus.ERROR
            logger.error("validation_error", task_id=run.task_id, error=str(e))
            return self._result(run, TaskOutcome.FAILED, error=f"Validation failed: {e}")

        if verdict.is_valid:
            state.status = AgentStatus.COMPLETED
            logger.info(
                "task_completed",
                task_id=run.task_id,
                validated=True,
                confidence=verdict.confidence,
            )
            return self._result(
                run, TaskOutcome.SUCCESS, confidence=verdict.confidence, message=verdict.message
            )

        if verdict.should_retry:
            state.error_count += 1
            run.last_error = verdict.message
            logger.warning(
                "validation_retry",
                task_id=run.task_id,
                message=verdict.message,
                error_count=state.error_count,
            )
            if state.error_count >= state.max_errors:
                state.status = AgentStatus.ERROR
                return self._result(
                    run, TaskOutcome.FAILED, error=verdict.message, confidence=verdict.confidence
                )
            state.status = AgentStatus.EXECUTING
            run.needs_plan = True
            return None

        state.status = AgentStatus.ERROR
        logger.warning("task_validation_failed", task_id=run.task_id, message=verdict.message)
        return self._result(
            run, TaskOutcome.FAILED, error=verdict.message, confidence=verdict.confidence
        )

    def _cancelled(self, run: _TaskRun) -> TaskResult:
        run.state.status = AgentStatus.IDLE
        logger.info("task_cancelled", task_id=run.task_id, steps=run.state.step_count)
        return self._result(run, TaskOutcome.PARTIAL, error="Task cancelled", cancelled=True)

    def _result(
        self,
        run: _TaskRun,
        outcome: TaskOutcome,
        error: str | None = None,
        confidence: float = 0.0,
        **extra: Any,
    ) -> TaskResult:
        state = run.state
        metadata = {
            "task_id": run.task_id,
            "plan_id": run.plan.id if run.plan else None,
            "steps": state.step_count,
            "errors": state.error_count,
            "replans": run.replans,
            "status": state.status.value,
            "duration_ms": (time.perf_counter() - run.started) * 1000,
            "completed_steps": list(run.completed),
            **extra,
        }
        return TaskResult(
            success=outcome == TaskOutcome.SUCCESS,
            outcome=outcome,
            data=run.last_data,
            error=error,
            confidence=confidence,
            metadata=metadata,
        )

    async def _emit(self, event: str, *payload: Any) -> None:
        for handler in self._handlers.get(event, []):
            try:
                outcome = handler(*payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning("event_handler_failed", event_name=event, error=str(e))
