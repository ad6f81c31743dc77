"""Unit tests for Planner module."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import pytest

from taskpilot.core.config import Config
from taskpilot.core.errors import PlanningError
from taskpilot.core.types import PlanningContext, StepRecord, TaskPlan
from taskpilot.planner import AnthropicPlanner


def _response(text: str) -> MagicMock:
    response = MagicMock()
    content_block = MagicMock()
    content_block.text = text
    response.content = [content_block]
    return response


def _client(text: str) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_response(text))
    return client


@pytest.fixture
def planning_context() -> PlanningContext:
    """Create a planning context with browser actions available.

    Returns:
        PlanningContext for a fresh task
    """
    return PlanningContext(
        task_id="task-1",
        available_actions=[
            {"name": "navigate", "description": "Navigate to a URL"},
            {"name": "click_element", "description": "Click an element"},
            {"name": "done", "description": "Signal completion"},
        ],
    )


@pytest.fixture
def sample_plan_json() -> str:
    """Create sample plan JSON response.

    Returns:
        JSON string representing a plan
    """
    return json.dumps(
        {
            "reasoning": "Open the site, then click pricing",
            "priority": "high",
            "steps": [
                {
                    "type": "navigate",
                    "description": "Open example.com",
                    "parameters": {"url": "https://example.com"},
                },
                {
                    "type": "click_element",
                    "description": "Click pricing",
                    "parameters": {"target": "Pricing"},
                    "dependencies": ["step_1"],
                },
                {"type": "done", "dependencies": ["step_2"]},
            ],
        }
    )


class TestAnthropicPlanner:
    """Test suite for AnthropicPlanner class."""

    @patch("taskpilot.planner.planner.anthropic.AsyncAnthropic")
    def test_init_creates_client(self, mock_anthropic, test_config: Config) -> None:
        """Test that __init__ creates an async Anthropic client."""
        mock_client = MagicMock()
        mock_anthropic.return_value = mock_client

        planner = AnthropicPlanner(test_config)

        mock_anthropic.assert_called_once_with(api_key=test_config.anthropic_api_key)
        assert planner.client == mock_client
        assert planner.config == test_config

    @pytest.mark.asyncio
    async def test_plan_returns_task_plan(
        self,
        test_config: Config,
        planning_context: PlanningContext,
        sample_plan_json: str,
    ) -> None:
        """Test that plan() parses steps and fills in default ids."""
        client = _client(sample_plan_json)
        planner = AnthropicPlanner(test_config, client=client)

        plan = await planner.plan("Open the pricing page", planning_context)

        assert isinstance(plan, TaskPlan)
        assert plan.instruction == "Open the pricing page"
        assert plan.priority.value == "high"
        assert [s.id for s in plan.steps] == ["step_1", "step_2", "step_3"]
        assert plan.steps[0].parameters == {"url": "https://example.com"}
        assert plan.steps[1].dependencies == ["step_1"]

        call_kwargs = client.messages.create.call_args[1]
        assert call_kwargs["model"] == test_config.planner_model
        assert call_kwargs["max_tokens"] == 2048
        prompt = call_kwargs["messages"][0]["content"]
        assert "Open the pricing page" in prompt
        assert "- click_element: Click an element" in prompt

    @pytest.mark.asyncio
    async def test_plan_extracts_json_from_prose(
        self,
        test_config: Config,
        planning_context: PlanningContext,
        sample_plan_json: str,
    ) -> None:
        """Test that plan() extracts JSON wrapped in markdown."""
        planner = AnthropicPlanner(
            test_config,
            client=_client(f"Here is the plan:\n```json\n{sample_plan_json}\n```"),
        )

        plan = await planner.plan("Open the pricing page", planning_context)

        assert len(plan.steps) == 3

    @pytest.mark.asyncio
    async def test_plan_rejects_unknown_action(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that steps must use registered action names."""
        response = json.dumps({"steps": [{"type": "teleport"}]})
        planner = AnthropicPlanner(test_config, client=_client(response))

        with pytest.raises(PlanningError, match="unknown actions: teleport"):
            await planner.plan("Go somewhere", planning_context)

    @pytest.mark.asyncio
    async def test_plan_rejects_missing_dependency(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that dependencies must refer to known steps."""
        response = json.dumps(
            {"steps": [{"id": "a", "type": "done", "dependencies": ["ghost"]}]}
        )
        planner = AnthropicPlanner(test_config, client=_client(response))

        with pytest.raises(PlanningError, match="ghost"):
            await planner.plan("Finish", planning_context)

    @pytest.mark.asyncio
    async def test_plan_allows_completed_dependency(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that a replan may depend on steps completed earlier."""
        context = planning_context.model_copy(update={"completed_step_ids": ["old_step"]})
        response = json.dumps(
            {"steps": [{"id": "next", "type": "done", "dependencies": ["old_step"]}]}
        )
        planner = AnthropicPlanner(test_config, client=_client(response))

        plan = await planner.plan("Finish", context)

        assert plan.steps[0].dependencies == ["old_step"]

    @pytest.mark.asyncio
    async def test_replan_numbers_steps_after_completed_ids(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that default ids of a replan continue past the completed step ids."""
        context = planning_context.model_copy(
            update={"completed_step_ids": [f"step_{n}" for n in range(1, 6)]}
        )
        response = json.dumps(
            {"steps": [{"type": "click_element"}, {"type": "done", "dependencies": ["step_6"]}]}
        )
        client = _client(response)
        planner = AnthropicPlanner(test_config, client=client)

        plan = await planner.plan("Finish", context)

        assert [s.id for s in plan.steps] == ["step_6", "step_7"]
        prompt = client.messages.create.call_args[1]["messages"][0]["content"]
        assert "Number new step ids from step_6" in prompt

    @pytest.mark.asyncio
    async def test_plan_rejects_completed_step_ids(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that a replan may not reuse the id of a completed step."""
        context = planning_context.model_copy(update={"completed_step_ids": ["step_1"]})
        response = json.dumps({"steps": [{"id": "step_1", "type": "done"}]})
        planner = AnthropicPlanner(test_config, client=_client(response))

        with pytest.raises(PlanningError, match="reuses completed step ids: step_1"):
            await planner.plan("Finish", context)

    @pytest.mark.asyncio
    async def test_plan_rejects_duplicate_ids(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that step ids must be unique."""
        response = json.dumps(
            {"steps": [{"id": "a", "type": "done"}, {"id": "a", "type": "done"}]}
        )
        planner = AnthropicPlanner(test_config, client=_client(response))

        with pytest.raises(PlanningError, match="duplicate"):
            await planner.plan("Finish", planning_context)

    @pytest.mark.asyncio
    async def test_plan_rejects_non_json(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that a response without JSON raises PlanningError."""
        planner = AnthropicPlanner(test_config, client=_client("I cannot help with that."))

        with pytest.raises(PlanningError, match="No JSON object"):
            await planner.plan("Finish", planning_context)

    @pytest.mark.asyncio
    async def test_plan_rejects_empty_steps(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that a plan without steps is rejected."""
        planner = AnthropicPlanner(test_config, client=_client('{"steps": []}'))

        with pytest.raises(PlanningError, match="no steps"):
            await planner.plan("Finish", planning_context)

    @pytest.mark.asyncio
    async def test_plan_wraps_api_errors(
        self, test_config: Config, planning_context: PlanningContext
    ) -> None:
        """Test that API failures surface as PlanningError."""
        client = MagicMock()
        client.messages.create = AsyncMock(
            side_effect=anthropic.APIConnectionError(request=MagicMock())
        )
        planner = AnthropicPlanner(test_config, client=client)

        with pytest.raises(PlanningError, match="Planner request failed"):
            await planner.plan("Finish", planning_context)

    @pytest.mark.asyncio
    async def test_replan_prompt_includes_progress(
        self,
        test_config: Config,
        planning_context: PlanningContext,
        sample_plan_json: str,
    ) -> None:
        """Test that the replan prompt lists history and the last error."""
        context = planning_context.model_copy(
            update={
                "step_index": 1,
                "completed_step_ids": ["step_1"],
                "history": [
                    StepRecord(
                        step_id="step_1", step_index=0, action="navigate", success=True
                    ),
                    StepRecord(
                        step_id="step_2",
                        step_index=1,
                        action="click_element",
                        success=False,
                        error="Element not found",
                    ),
                ],
                "last_error": "Element not found, trying alternative approach...",
            }
        )
        client = _client(sample_plan_json)
        planner = AnthropicPlanner(test_config, client=client)

        await planner.plan("Open the pricing page", context)

        prompt = client.messages.create.call_args[1]["messages"][0]["content"]
        assert "step_2: click_element FAILED (Element not found)" in prompt
        assert "Completed step ids: step_1" in prompt
        assert "The last step failed with: Element not found" in prompt

    @pytest.mark.asyncio
    async def test_validate_parses_verdict(self, test_config: Config) -> None:
        """Test that validate() parses the verdict and clamps confidence."""
        client = _client(
            json.dumps(
                {
                    "is_valid": True,
                    "confidence": 1.7,
                    "message": "Pricing page is open",
                    "should_retry": False,
                }
            )
        )
        planner = AnthropicPlanner(test_config, client=client)
        history = [StepRecord(step_id="s1", step_index=0, action="navigate", success=True)]

        verdict = await planner.validate("Open the pricing page", history)

        assert verdict.is_valid is True
        assert verdict.confidence == 1.0
        assert verdict.message == "Pricing page is open"
        call_kwargs = client.messages.create.call_args[1]
        assert call_kwargs["model"] == test_config.validator_model
        assert "1. navigate" in call_kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_validate_handles_garbage(self, test_config: Config) -> None:
        """Test that an unusable validation response counts as not valid."""
        planner = AnthropicPlanner(test_config, client=_client("no idea"))

        verdict = await planner.validate("Open the pricing page", [])

        assert verdict.is_valid is False
        assert verdict.confidence == 0.0
        assert verdict.message.startswith("Validation unavailable")
