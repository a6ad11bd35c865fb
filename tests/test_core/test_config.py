"""Configuration loading tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import ConfigError, load_config
from core.retry import AGENT_RETRY

_SAMPLE = """\
agent:
  name: Helper
  persona: You are a careful engineer.
loop:
  max_steps: 20
  step_delay_seconds: 0
  max_duration_seconds: 600
runner:
  plan_enabled: false
  model_retry:
    max_attempts: 2
llm:
  provider_priority: [openrouter]
  providers:
    openrouter:
      enabled: true
      api_key: file-key
      default_model: anthropic/claude-sonnet-4.6
shell:
  timeout: 15
  blacklist_patterns: ["rm -rf /"]
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OPENROUTER_API_KEY",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "TASKRUNNER_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


class TestLoadConfig:
    def test_loads_sections(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, _SAMPLE))

        assert cfg.agent.persona == "You are a careful engineer."
        assert cfg.loop.max_steps == 20
        assert cfg.loop.max_duration_seconds == 600
        assert cfg.loop.ai_timeout_seconds == 180
        assert cfg.runner.plan_enabled is False
        assert cfg.runner.model_retry.max_attempts == 2
        assert cfg.runner.model_retry.base_delay == AGENT_RETRY.base_delay
        assert cfg.llm.providers["openrouter"].api_key == "file-key"
        assert cfg.shell.timeout == 15
        assert cfg.project_root == tmp_path

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg.loop.max_steps == 50
        assert cfg.runner.plan_enabled is True
        assert cfg.llm.providers == {}

    def test_empty_file(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, ""))
        assert cfg.loop.step_delay_seconds == 0.5

    def test_env_path(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TASKRUNNER_CONFIG", str(_write(tmp_path, _SAMPLE)))
        assert load_config().agent.name == "Helper"

    def test_env_key_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENROUTER_API_KEY", "env-key")
        monkeypatch.setenv("OPENAI_API_KEY", "oa-env-key")
        cfg = load_config(_write(tmp_path, _SAMPLE))

        assert cfg.llm.providers["openrouter"].api_key == "env-key"
        assert cfg.llm.providers["openai"].enabled is True
        assert cfg.llm.provider_priority == ["openrouter", "openai"]


class TestValidation:
    @pytest.mark.parametrize(
        "text, message",
        [
            ("loop:\n  max_steps: 0\n", "max_steps"),
            ("loop:\n  tool_timeout_seconds: -1\n", "tool_timeout_seconds"),
            ("runner:\n  plan_max_attempts: 0\n", "plan_max_attempts"),
            ("runner:\n  task_retention_seconds: -5\n", "task_retention_seconds"),
            ("runner:\n  prep_retry:\n    max_attempts: 0\n", "prep_retry"),
        ],
    )
    def test_rejects_bad_values(self, tmp_path: Path, text: str, message: str) -> None:
        with pytest.raises(ConfigError, match=message):
            load_config(_write(tmp_path, text))
