"""Configuration system for the task runner.

Loads config.yaml, validates numeric limits, and provides typed access.
Supports environment variable overrides for provider API keys.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from core.retry import AGENT_RETRY, DEFAULT_RETRY, RetryConfig


class ConfigError(Exception):
    """Raised when config.yaml contains an invalid value."""


@dataclass
class AgentConfig:
    """Identity of the assistant running the tasks."""

    name: str = "Assistant"
    persona: str = ""


@dataclass
class LoopConfig:
    """Budgets for a single agent loop run."""

    max_steps: int = 50
    step_delay_seconds: float = 0.5
    max_duration_seconds: float = 1800  # 0 = unlimited
    ai_timeout_seconds: float = 180
    tool_timeout_seconds: float = 60


@dataclass
class RunnerConfig:
    """Task lifecycle settings."""

    plan_enabled: bool = True
    plan_max_attempts: int = 2
    plan_timeout_seconds: float = 30
    task_retention_seconds: float = 300
    model_retry: RetryConfig = field(default_factory=lambda: AGENT_RETRY)
    prep_retry: RetryConfig = field(default_factory=lambda: DEFAULT_RETRY)


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    api_key: str = ""
    enabled: bool = False
    base_url: str = ""
    default_model: str = ""


@dataclass
class LLMConfig:
    """All LLM-related configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    provider_priority: list[str] = field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 4096


@dataclass
class ShellConfig:
    """Shell execution configuration."""

    timeout: int = 30
    blacklist_patterns: list[str] = field(default_factory=list)


@dataclass
class Config:
    """Top-level configuration."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    project_root: Path = field(default_factory=Path.cwd)


# Env var -> provider name
_ENV_KEYS = {
    "OPENROUTER_API_KEY": "openrouter",
    "OPENAI_API_KEY": "openai",
    "ANTHROPIC_API_KEY": "anthropic",
}


def _parse_provider(data: dict[str, Any]) -> ProviderConfig:
    """Parse a provider config section."""
    return ProviderConfig(
        api_key=data.get("api_key", ""),
        enabled=data.get("enabled", False),
        base_url=data.get("base_url", ""),
        default_model=data.get("default_model", ""),
    )


def _parse_retry(data: dict[str, Any], default: RetryConfig) -> RetryConfig:
    """Parse a retry section, falling back to *default* per field."""
    return RetryConfig(
        max_attempts=data.get("max_attempts", default.max_attempts),
        base_delay=data.get("base_delay", default.base_delay),
        max_delay=data.get("max_delay", default.max_delay),
        backoff_multiplier=data.get("backoff_multiplier", default.backoff_multiplier),
        jitter_factor=data.get("jitter_factor", default.jitter_factor),
    )


def _validate(config: Config) -> None:
    """Reject values the loop cannot run with."""
    loop = config.loop
    if loop.max_steps < 1:
        raise ConfigError(f"loop.max_steps must be >= 1, got {loop.max_steps}")
    for name in (
        "step_delay_seconds",
        "max_duration_seconds",
        "ai_timeout_seconds",
        "tool_timeout_seconds",
    ):
        if getattr(loop, name) < 0:
            raise ConfigError(f"loop.{name} must not be negative")
    if config.runner.plan_max_attempts < 1:
        raise ConfigError("runner.plan_max_attempts must be >= 1")
    if config.runner.task_retention_seconds < 0:
        raise ConfigError("runner.task_retention_seconds must not be negative")
    for label, retry in (
        ("model_retry", config.runner.model_retry),
        ("prep_retry", config.runner.prep_retry),
    ):
        if retry.max_attempts < 1:
            raise ConfigError(f"runner.{label}.max_attempts must be >= 1")


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides for API keys."""
    for env_name, provider in _ENV_KEYS.items():
        env_key = os.environ.get(env_name)
        if not env_key:
            continue
        cfg = config.llm.providers.setdefault(provider, ProviderConfig())
        cfg.api_key = env_key
        cfg.enabled = True
        if provider not in config.llm.provider_priority:
            config.llm.provider_priority.append(provider)


def load_config(config_path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config.yaml. If None, checks TASKRUNNER_CONFIG
                     env var, then falls back to ./config.yaml.

    Returns:
        Populated Config dataclass.
    """
    if config_path is None:
        env_path = os.environ.get("TASKRUNNER_CONFIG")
        if env_path:
            config_path = Path(env_path)
        else:
            config_path = Path.cwd() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        config = Config(project_root=config_path.parent)
        _apply_env_overrides(config)
        return config

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    # Parse agent section
    agent_raw = raw.get("agent", {}) or {}
    agent_config = AgentConfig(
        name=agent_raw.get("name", "Assistant"),
        persona=agent_raw.get("persona", ""),
    )

    # Parse loop section
    loop_raw = raw.get("loop", {}) or {}
    loop_config = LoopConfig(
        max_steps=loop_raw.get("max_steps", 50),
        step_delay_seconds=loop_raw.get("step_delay_seconds", 0.5),
        max_duration_seconds=loop_raw.get("max_duration_seconds", 1800),
        ai_timeout_seconds=loop_raw.get("ai_timeout_seconds", 180),
        tool_timeout_seconds=loop_raw.get("tool_timeout_seconds", 60),
    )

    # Parse runner section
    runner_raw = raw.get("runner", {}) or {}
    runner_config = RunnerConfig(
        plan_enabled=runner_raw.get("plan_enabled", True),
        plan_max_attempts=runner_raw.get("plan_max_attempts", 2),
        plan_timeout_seconds=runner_raw.get("plan_timeout_seconds", 30),
        task_retention_seconds=runner_raw.get("task_retention_seconds", 300),
        model_retry=_parse_retry(runner_raw.get("model_retry") or {}, AGENT_RETRY),
        prep_retry=_parse_retry(runner_raw.get("prep_retry") or {}, DEFAULT_RETRY),
    )

    # Parse LLM section
    llm_raw = raw.get("llm", {}) or {}
    providers: dict[str, ProviderConfig] = {}
    for name, pdata in (llm_raw.get("providers") or {}).items():
        providers[name] = _parse_provider(pdata or {})

    llm_config = LLMConfig(
        providers=providers,
        provider_priority=list(llm_raw.get("provider_priority", [])),
        temperature=llm_raw.get("temperature", 0.7),
        max_tokens=llm_raw.get("max_tokens", 4096),
    )

    # Parse shell section
    shell_raw = raw.get("shell", {}) or {}
    shell_config = ShellConfig(
        timeout=shell_raw.get("timeout", 30),
        blacklist_patterns=shell_raw.get("blacklist_patterns", []),
    )

    config = Config(
        agent=agent_config,
        loop=loop_config,
        runner=runner_config,
        llm=llm_config,
        shell=shell_config,
        project_root=config_path.parent,
    )

    _apply_env_overrides(config)
    _validate(config)
    return config
