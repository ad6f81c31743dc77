"""
taskpilot Command-Line Interface

Runs a natural language browser task from the command line.

Usage:
    taskpilot "Your task description here"
    taskpilot "Search example.com for pricing" --headless
    taskpilot "Open the settings page" --url https://example.com --max-steps 10
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog

from taskpilot.actions import BrowserActions
from taskpilot.core.config import Config
from taskpilot.core.types import TaskOptions, TaskOutcome, TaskResult
from taskpilot.dispatcher import ActionDispatcher
from taskpilot.executor import PlaywrightEnvironment
from taskpilot.orchestrator import TaskOrchestrator
from taskpilot.planner import AnthropicPlanner
from taskpilot.registry import ActionRegistry


def add_cli_status_messages(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add user-friendly CLI status messages for key events."""
    event = event_dict.get("event", "")
    level = event_dict.get("level", "info")

    # Only show status for important events at INFO level or higher
    if level not in ("info", "warning", "error"):
        return event_dict

    status_messages = {
        "planning": lambda d: "🧠 Re-planning" if d.get("replan") else "🧠 Generating plan",
        "plan_created": lambda d: f"📋 Plan ready: {d.get('steps', '?')} steps",
        "executing_step": lambda d: f"🔄 Step {d.get('step_count', '?')}: {d.get('action', '?')} - {d.get('description', '')}",
        "action_completed": lambda d: f"✅ {d.get('action', '?')} completed",
        "retrying_action": lambda d: f"🔁 Retrying {d.get('action', '?')} in {d.get('delay_seconds', '?')}s",
        "action_failed": lambda d: f"❌ Action failed: {d.get('error', 'Unknown error')}",
        "circuit_breaker_tripped": lambda d: f"⛔ Circuit breaker open for {d.get('breaker', '?')}",
        "validating_task": "🔍 Validating result",
        "max_steps_reached": "⏹️  Step limit reached",
        "max_errors_reached": "❌ Maximum error count reached",
        "task_validation_failed": "⚠️  Task validation failed",
    }

    if event in status_messages:
        msg = status_messages[event]
        status = msg(event_dict) if callable(msg) else msg
        print(status, flush=True)

    return event_dict


def configure_logging(log_level: str) -> None:
    """Configure structured logging for CLI output."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            add_cli_status_messages,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="taskpilot",
        description="taskpilot - Plan, execute, and validate browser tasks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  taskpilot "Go to example.com and open the pricing page"
  taskpilot "Search for Python tutorials" --url https://duckduckgo.com --headless
  taskpilot "Fill in the contact form" --storage-state session.json --max-steps 15

Environment Variables:
  ANTHROPIC_API_KEY    Required: Your Anthropic API key
        """,
    )

    parser.add_argument(
        "task",
        type=str,
        help="Natural language description of the task to execute",
    )

    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Starting URL to navigate to before executing task",
    )

    parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Anthropic API key (or set ANTHROPIC_API_KEY env var)",
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run browser in headless mode (no visible window)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--max-steps",
        type=int,
        default=20,
        help="Maximum steps before the task is stopped as incomplete (default: 20)",
    )

    parser.add_argument(
        "--max-errors",
        type=int,
        default=5,
        help="Maximum failed steps before the task errors out (default: 5)",
    )

    parser.add_argument(
        "--timeout",
        type=int,
        default=30000,
        help="Per-action timeout in milliseconds (default: 30000)",
    )

    parser.add_argument(
        "--retries",
        type=int,
        default=2,
        help="Retries per action after the first attempt (default: 2)",
    )

    parser.add_argument(
        "--no-validation",
        action="store_true",
        help="Skip LLM validation of task completion",
    )

    parser.add_argument(
        "--no-replanning",
        action="store_true",
        help="Keep the initial plan instead of replanning",
    )

    parser.add_argument(
        "--planner-model",
        type=str,
        default="claude-haiku-4-5-20251001",
        help="Model to use for planning and validation (default: claude-haiku-4-5-20251001)",
    )

    parser.add_argument(
        "--storage-state",
        type=str,
        default=None,
        help="Path to storage state JSON file with a saved login session",
    )

    return parser


def print_result(result: TaskResult) -> None:
    print()
    print("=" * 70)
    if result.outcome == TaskOutcome.SUCCESS:
        print(f"✅ Task completed successfully (confidence {result.confidence:.0%})")
    elif result.outcome == TaskOutcome.PARTIAL:
        print(f"⏹️  Task incomplete: {result.error}")
    else:
        print(f"❌ Task failed: {result.error}")
        print("💡 Try running with --log-level DEBUG for more details")
    print(
        f"📊 Steps: {result.metadata.get('steps', 0)}, "
        f"errors: {result.metadata.get('errors', 0)}, "
        f"duration: {result.metadata.get('duration_ms', 0.0) / 1000:.1f}s"
    )
    print("=" * 70)


async def run_task(args: argparse.Namespace) -> bool:
    """Execute the task from parsed arguments."""
    api_key = args.api_key or os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        print("❌ Error: No API key provided.")
        print("Either set ANTHROPIC_API_KEY environment variable or use --api-key flag")
        return False

    storage_state = Path(args.storage_state) if args.storage_state else None

    config = Config(
        anthropic_api_key=api_key,
        headless=args.headless,
        log_level=args.log_level,
        action_timeout_ms=args.timeout,
        retry_count=args.retries,
        max_steps=args.max_steps,
        max_errors=args.max_errors,
        planner_model=args.planner_model,
        validator_model=args.planner_model,
        storage_state=storage_state,
    )

    environment = PlaywrightEnvironment(config=config)
    registry = ActionRegistry()
    BrowserActions(environment, config=config).register_all(registry)
    dispatcher = ActionDispatcher(registry, config=config)
    planner = AnthropicPlanner(config=config)
    orchestrator = TaskOrchestrator(planner, dispatcher, validator=planner, config=config)

    options = TaskOptions(
        max_steps=args.max_steps,
        max_errors=args.max_errors,
        enable_validation=not args.no_validation,
        enable_replanning=not args.no_replanning,
    )

    try:
        print("=" * 70)
        print("🤖 taskpilot - Browser Task Automation")
        print("=" * 70)
        print(f"📋 Task: {args.task}")
        if args.url:
            print(f"🌐 Starting URL: {args.url}")
        print(f"🖥️  Headless: {args.headless}")
        print(f"📊 Log Level: {args.log_level}")
        print(f"🧠 Planner Model: {args.planner_model}")
        if storage_state:
            state = "loaded" if storage_state.exists() else "not found - will run without login"
            print(f"🔐 Storage State: {storage_state} ({state})")
        print("=" * 70)
        print()

        await environment.start()

        if args.url:
            print(f"Navigating to {args.url}...")
            await environment.navigate(args.url)
            print()

        result = await orchestrator.execute_task(args.task, options=options)
        print_result(result)
        return result.success

    except KeyboardInterrupt:
        orchestrator.stop()
        print("\n\n⚠️  Task interrupted by user")
        return False

    finally:
        print("\nCleaning up...")
        await environment.stop()


def main() -> int:
    """Main entry point for CLI."""
    parser = create_parser()

    if len(sys.argv) == 1:
        parser.print_help()
        return 1

    args = parser.parse_args()
    configure_logging(args.log_level)

    success = asyncio.run(run_task(args))
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
