"""Shared pytest fixtures for taskpilot tests."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.core.config import Config
from taskpilot.core.types import ActionResult, Candidate, Geometry
from taskpilot.dispatcher import ActionDispatcher
from taskpilot.recovery import CircuitBreakerRegistry
from taskpilot.registry import ActionRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.delays)


@pytest.fixture
def test_config() -> Config:
    """Create a test configuration.

    Returns:
        Config instance for testing
    """
    return Config(
        anthropic_api_key="test-api-key",
        headless=True,
        viewport_width=1280,
        viewport_height=720,
        action_timeout_ms=1000,
        retry_count=2,
        retry_delay_ms=1000,
        planning_timeout=5.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def registry() -> ActionRegistry:
    return ActionRegistry()


@pytest.fixture
def breakers(clock: FakeClock) -> CircuitBreakerRegistry:
    """Fresh circuit breakers driven by the fake clock."""
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def dispatcher(
    registry: ActionRegistry,
    test_config: Config,
    breakers: CircuitBreakerRegistry,
    recording_sleep: RecordingSleep,
) -> ActionDispatcher:
    """Dispatcher with a fresh breaker registry and no real backoff sleeping."""
    return ActionDispatcher(
        registry, config=test_config, breakers=breakers, sleep=recording_sleep
    )


def _make_candidate(
    index: int,
    text: str,
    kind: str = "button",
    attributes: dict[str, str] | None = None,
    **overrides: Any,
) -> Candidate:
    """Build a visible, interactive candidate with a small bounding box."""
    values: dict[str, Any] = {
        "index": index,
        "kind": kind,
        "text_content": text,
        "attributes": attributes or {},
        "geometry": Geometry(x=10.0 * index, y=20.0, width=80.0, height=30.0),
    }
    values.update(overrides)
    return Candidate(**values)


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright Page object.

    Returns:
        AsyncMock configured to simulate Playwright Page
    """
    page = AsyncMock()
    page.url = "https://example.com/"
    page.mouse = MagicMock()
    page.mouse.click = AsyncMock()
    page.mouse.move = AsyncMock()
    page.mouse.wheel = AsyncMock()
    page.keyboard = MagicMock()
    page.keyboard.type = AsyncMock()
    page.keyboard.press = AsyncMock()
    return page


@pytest.fixture
def mock_environment() -> MagicMock:
    """Create a mock environment adapter.

    Returns:
        MagicMock with async list_candidates and perform
    """
    environment = MagicMock()
    environment.list_candidates = AsyncMock(return_value=[])
    environment.perform = AsyncMock(return_value=ActionResult(success=True, data={}))
    return environment


@pytest.fixture
def make_candidate():
    """Factory for candidates; see ``_make_candidate``."""
    return _make_candidate
