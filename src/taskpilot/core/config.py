"""Configuration management for taskpilot."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", "")
    )

    # Model settings
    planner_model: str = Field(default="claude-haiku-4-5-20251001")
    validator_model: str = Field(default="claude-haiku-4-5-20251001")
    planner_max_tokens: int = Field(default=2048)

    # Browser settings
    headless: bool = Field(default=False)
    viewport_width: int = Field(default=1280)
    viewport_height: int = Field(default=720)
    storage_state: Path | None = Field(
        default=None, description="Path to storage state JSON for session persistence"
    )
    navigation_timeout_ms: int = Field(default=60000)

    # Dispatcher defaults
    action_timeout_ms: int = Field(
        default=30000, description="Per-action timeout in milliseconds"
    )
    retry_count: int = Field(
        default=2, description="Retries after the first failed attempt"
    )
    retry_delay_ms: int = Field(
        default=1000, description="Linear backoff unit in milliseconds"
    )

    # Orchestrator defaults
    max_steps: int = Field(default=20)
    max_errors: int = Field(default=5)
    replan_interval: int = Field(
        default=5, description="Replan every N steps (and after any failure)"
    )
    planning_timeout: float = Field(
        default=60.0, description="Seconds allowed for one planning call"
    )
    validation_confidence_threshold: float = Field(
        default=0.8, description="Step confidence above which completion is validated"
    )

    # Target resolution
    candidate_cache_ttl: float = Field(
        default=5.0, description="Seconds a candidate snapshot stays valid"
    )

    # Error analysis
    error_history_size: int = Field(
        default=50, description="Classifications kept per operation class"
    )

    # Logging settings
    log_level: str = Field(default="INFO")
