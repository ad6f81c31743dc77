"""Boundary interfaces for the collaborators the core consumes."""

from typing import Any, Protocol, runtime_checkable

from .types import (
    ActionResult,
    Candidate,
    PlanningContext,
    StepRecord,
    TaskPlan,
    ValidationResult,
)


@runtime_checkable
class PlanningCollaborator(Protocol):
    """Produces task plans from an instruction.

    Failure to plan is signalled by raising; the orchestrator treats it
    as fatal for the current planning attempt.
    """

    async def plan(self, instruction: str, context: PlanningContext) -> TaskPlan:
        """Generate a plan.

        Args:
            instruction: Natural language goal
            context: Progress so far (completed steps, history, last error)

        Returns:
            A new task plan
        """
        ...


@runtime_checkable
class ValidationCollaborator(Protocol):
    """Judges whether a task has reached its goal."""

    async def validate(
        self, instruction: str, history: list[StepRecord]
    ) -> ValidationResult:
        """Validate task completion.

        Args:
            instruction: Natural language goal
            history: Records of every dispatched step

        Returns:
            Validation verdict
        """
        ...


@runtime_checkable
class EnvironmentAdapter(Protocol):
    """Performs physical interaction with the live environment."""

    async def list_candidates(self, query: str | None = None) -> list[Candidate]:
        """Extract candidate interactive objects.

        Args:
            query: Optional text filter

        Returns:
            Fresh list of candidates
        """
        ...

    async def perform(self, action_name: str, params: dict[str, Any]) -> ActionResult:
        """Perform a primitive action (click, type, scroll, navigate).

        Args:
            action_name: Primitive action name
            params: Action parameters

        Returns:
            Result of the primitive action
        """
        ...
