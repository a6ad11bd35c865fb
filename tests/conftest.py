"""Shared test fixtures for the task runner tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import (
    Config,
    LLMConfig,
    LoopConfig,
    ProviderConfig,
    RunnerConfig,
    ShellConfig,
)
from core.retry import RetryConfig

FAST_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=0.01,
    max_delay=0.02,
    backoff_multiplier=2.0,
    jitter_factor=0.0,
)


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Config with no delays, small budgets, and millisecond retries."""
    return Config(
        loop=LoopConfig(
            max_steps=5,
            step_delay_seconds=0,
            max_duration_seconds=0,
            ai_timeout_seconds=5,
            tool_timeout_seconds=2,
        ),
        runner=RunnerConfig(
            plan_enabled=False,
            plan_max_attempts=2,
            plan_timeout_seconds=2,
            task_retention_seconds=300,
            model_retry=FAST_RETRY,
            prep_retry=FAST_RETRY,
        ),
        llm=LLMConfig(
            providers={
                "openrouter": ProviderConfig(
                    api_key="test-key",
                    enabled=True,
                    base_url="https://openrouter.example/api/v1",
                    default_model="test/model",
                ),
            },
            provider_priority=["openrouter"],
        ),
        shell=ShellConfig(
            timeout=10,
            blacklist_patterns=["rm -rf /", "mkfs", "dd if="],
        ),
        project_root=tmp_path,
    )
