"""Example: Execute a simple task with taskpilot."""

import asyncio

from taskpilot.actions import BrowserActions
from taskpilot.core.config import Config
from taskpilot.dispatcher import ActionDispatcher
from taskpilot.executor import PlaywrightEnvironment
from taskpilot.orchestrator import TaskOrchestrator
from taskpilot.planner import AnthropicPlanner
from taskpilot.registry import ActionRegistry


async def main() -> None:
    """Run a simple example task."""
    config = Config(
        headless=False,  # Show browser for demo
    )

    environment = PlaywrightEnvironment(config=config)
    registry = ActionRegistry()
    BrowserActions(environment, config=config).register_all(registry)

    planner = AnthropicPlanner(config=config)
    orchestrator = TaskOrchestrator(
        planner,
        ActionDispatcher(registry, config=config),
        validator=planner,
        config=config,
    )

    orchestrator.on(
        "step_completed",
        lambda step, result: print(f"Completed {step.id}: {step.description}"),
    )

    try:
        await environment.start()
        await environment.navigate("https://example.com")

        task = "Click the 'More information...' link"
        result = await orchestrator.execute_task(task)

        if result.success:
            print(f"Task completed successfully: {task}")
        else:
            print(f"Task {result.outcome.value}: {result.error}")

    finally:
        await environment.stop()


if __name__ == "__main__":
    asyncio.run(main())
