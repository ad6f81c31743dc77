"""Planner - Task planning and completion validation with an LLM."""

import json
import re
import uuid
from typing import Any

import anthropic
import structlog
from pydantic import ValidationError

from taskpilot.core.config import Config
from taskpilot.core.errors import PlanningError
from taskpilot.core.types import (
    PlanningContext,
    PlanStep,
    StepRecord,
    TaskPlan,
    ValidationResult,
)


logger = structlog.get_logger()

STEP_ID_PATTERN = re.compile(r"^step_(\d+)$")


PLAN_SCHEMA = """
{
  "reasoning": "why these steps accomplish the task",
  "priority": "medium", // low, medium, high, critical
  "risk_level": "low", // low, medium, high
  "requires_confirmation": false,
  "steps": [
    {
      "id": "step_1",
      "type": "navigate", // one of the available action names
      "description": "Open the search page",
      "parameters": {"url": "https://example.com"},
      "dependencies": [], // ids of steps that must complete first
      "required": true
    }
  ]
}
"""

VALIDATION_SCHEMA = """
{"is_valid": true/false, "confidence": <0.0-1.0>, "message": "<brief explanation>", "should_retry": true/false, "suggestions": ["..."]}
"""


class AnthropicPlanner:
    """Planning and validation collaborator backed by a text-only LLM."""

    def __init__(
        self,
        config: Config | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        """Initialize the planner.

        Args:
            config: Application configuration
            client: Anthropic client; created from the configured API key if omitted
        """
        self.config = config or Config()
        self.client = client or anthropic.AsyncAnthropic(api_key=self.config.anthropic_api_key)

    async def plan(self, instruction: str, context: PlanningContext) -> TaskPlan:
        """Generate (or regenerate) a plan for an instruction.

        Args:
            instruction: Natural language task description
            context: Progress so far and the available actions

        Returns:
            Structured task plan

        Raises:
            PlanningError: If the model response cannot be turned into a plan
        """
        prompt = self._plan_prompt(instruction, context)

        try:
            response = await self.client.messages.create(
                model=self.config.planner_model,
                max_tokens=self.config.planner_max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.error("plan_generation_failed", task_id=context.task_id, error=str(e))
            raise PlanningError(f"Planner request failed: {e}") from e

        response_text = response.content[0].text
        plan = self._parse_plan_response(instruction, response_text, context)

        logger.info(
            "plan_generated",
            task_id=context.task_id,
            steps=len(plan.steps),
            replan=bool(context.history),
            step_list=[f"{s.id}: {s.type} - {s.description}" for s in plan.steps],
        )
        return plan

    async def validate(self, instruction: str, history: list[StepRecord]) -> ValidationResult:
        """Judge whether the executed steps accomplished the instruction.

        Args:
            instruction: Original task goal
            history: Records of every dispatched step

        Returns:
            Validation verdict; an unusable response counts as not valid
        """
        executed = "\n".join(
            f"  {record.step_index + 1}. {record.action} ({record.description}): "
            f"{'succeeded' if record.success else 'failed: ' + (record.error or 'unknown error')}"
            f"{' -> ' + json.dumps(record.data, default=str)[:200] if record.data is not None else ''}"
            for record in history
        )

        prompt = f"""Determine whether the following task was completed successfully.

Task: {instruction}

Executed Steps:
{executed or "  (none)"}

Examine the execution history for:
1. Evidence that the goal state was reached
2. Failed steps that the goal depends on
3. Whether retrying with a new plan could still succeed

Respond with ONLY a JSON object:
{VALIDATION_SCHEMA}
"""

        try:
            response = await self.client.messages.create(
                model=self.config.validator_model,
                max_tokens=512,
                messages=[{"role": "user", "content": prompt}],
            )
            result = self._parse_json_object(response.content[0].text)
            verdict = ValidationResult.model_validate(
                {
                    "is_valid": bool(result.get("is_valid", False)),
                    "confidence": min(1.0, max(0.0, float(result.get("confidence", 0.0)))),
                    "message": result.get("message", ""),
                    "should_retry": bool(result.get("should_retry", False)),
                    "suggestions": result.get("suggestions") or [],
                }
            )
        except (anthropic.APIError, PlanningError, ValidationError, TypeError, ValueError) as e:
            logger.error("validation_failed", instruction=instruction, error=str(e))
            return ValidationResult(
                is_valid=False,
                confidence=0.0,
                message=f"Validation unavailable: {e}",
            )

        logger.info(
            "validation_complete",
            instruction=instruction,
            is_valid=verdict.is_valid,
            confidence=verdict.confidence,
            should_retry=verdict.should_retry,
        )
        return verdict

    def _plan_prompt(self, instruction: str, context: PlanningContext) -> str:
        actions = "\n".join(
            f"- {action['name']}: {action.get('description', '')}"
            for action in context.available_actions
        )

        if context.history:
            executed = "\n".join(
                f"  {record.step_id}: {record.action} "
                f"{'OK' if record.success else 'FAILED (' + (record.error or '') + ')'}"
                for record in context.history
            )
            progress = f"""
Steps Executed So Far:
{executed}

Completed step ids: {", ".join(context.completed_step_ids) or "(none)"}

CRITICAL: Completed steps were ALREADY DONE. Do not repeat them.
Continue from the current state; reuse completed step ids only as dependencies.
"""
        else:
            progress = "\nThis is the first attempt. Generate a complete plan from the beginning.\n"

        if context.completed_step_ids:
            first_number = _first_free_step_number(context.completed_step_ids)
            progress += f"Number new step ids from step_{first_number}.\n"

        failure = ""
        if context.last_error:
            failure = f"\nThe last step failed with: {context.last_error}\nAvoid repeating the same mistake.\n"

        return f"""You are an expert at planning browser automation tasks. Generate a step-by-step plan to accomplish the following task.

Task: {instruction}
{progress}{failure}
Available Actions:
{actions or "- (none registered)"}

Requirements:
1. Break down the task into discrete, atomic actions
2. Use ONLY the available action names as step types
3. Declare dependencies between steps by id
4. Mark steps the goal does not depend on with "required": false
5. Finish with a "done" step once the goal is reached

Output Format:
Return ONLY a JSON object following this schema:
{PLAN_SCHEMA}

Generate the plan:
"""

    def _parse_plan_response(
        self, instruction: str, response_text: str, context: PlanningContext
    ) -> TaskPlan:
        """Build a task plan from a model response.

        Raises:
            PlanningError: If the response is not a usable plan
        """
        data = self._parse_json_object(response_text)
        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise PlanningError("Plan response contains no steps")

        first_number = _first_free_step_number(context.completed_step_ids)
        steps = []
        for position, raw_step in enumerate(raw_steps, start=1):
            if not isinstance(raw_step, dict):
                raise PlanningError(f"Plan step {position} is not an object")
            raw_step = {"id": f"step_{first_number + position - 1}", **raw_step}
            try:
                steps.append(PlanStep.model_validate(raw_step))
            except ValidationError as e:
                raise PlanningError(f"Invalid plan step {position}: {e}") from e

        self._check_plan(steps, context)

        try:
            return TaskPlan(
                id=str(uuid.uuid4()),
                instruction=instruction,
                steps=steps,
                priority=data.get("priority", "medium"),
                risk_level=data.get("risk_level", "low"),
                requires_confirmation=bool(data.get("requires_confirmation", False)),
                reasoning=data.get("reasoning", ""),
            )
        except ValidationError as e:
            raise PlanningError(f"Invalid plan: {e}") from e

    def _check_plan(self, steps: list[PlanStep], context: PlanningContext) -> None:
        known_actions = {action["name"] for action in context.available_actions}
        if known_actions:
            unknown = sorted({step.type for step in steps} - known_actions)
            if unknown:
                raise PlanningError(f"Plan uses unknown actions: {', '.join(unknown)}")

        step_ids = [step.id for step in steps]
        if len(set(step_ids)) != len(step_ids):
            raise PlanningError("Plan contains duplicate step ids")

        reused = [step_id for step_id in step_ids if step_id in context.completed_step_ids]
        if reused:
            raise PlanningError(f"Plan reuses completed step ids: {', '.join(reused)}")

        resolvable = set(step_ids) | set(context.completed_step_ids)
        for step in steps:
            missing = [dep for dep in step.dependencies if dep not in resolvable]
            if missing:
                raise PlanningError(
                    f"Step {step.id} depends on unknown steps: {', '.join(missing)}"
                )

    def _parse_json_object(self, response_text: str) -> dict[str, Any]:
        """Parse a JSON object from a model response.

        Raises:
            PlanningError: If no JSON object can be extracted
        """
        try:
            parsed = json.loads(response_text)
        except json.JSONDecodeError:
            match = re.search(r"\{[\s\S]*\}", response_text)
            if not match:
                logger.debug("json_not_found", response_preview=response_text[:200])
                raise PlanningError("No JSON object in model response")
            try:
                parsed = json.loads(match.group())
            except json.JSONDecodeError as e:
                logger.debug("json_parse_failed", response_preview=response_text[:200])
                raise PlanningError(f"Malformed JSON in model response: {e}") from e

        if not isinstance(parsed, dict):
            raise PlanningError("Model response is not a JSON object")
        return parsed


def _first_free_step_number(completed_step_ids: list[str]) -> int:
    """Lowest ``step_N`` number above every completed ``step_N`` id."""
    numbers = [
        int(match.group(1))
        for match in map(STEP_ID_PATTERN.match, completed_step_ids)
        if match
    ]
    return max(numbers, default=0) + 1
