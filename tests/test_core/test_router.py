"""Router provider selection and litellm call tests."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from core.config import Config, LLMConfig, ProviderConfig
from core.router import LLMResponse, LLMRouter, parse_tool_calls


def _litellm_response(content=None, tool_calls=None, cost: float = 0.002):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
        _hidden_params={"response_cost": cost},
    )


def _raw_call(call_id: str, name: str, arguments: str) -> SimpleNamespace:
    return SimpleNamespace(
        id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


class TestRouterSelection:
    def _make_config(self) -> Config:
        return Config(
            llm=LLMConfig(
                providers={
                    "openrouter": ProviderConfig(
                        enabled=True,
                        api_key="or-key",
                        default_model="anthropic/claude-sonnet-4.6",
                    ),
                    "openai": ProviderConfig(
                        enabled=True, api_key="oa-key", default_model="gpt-4o"
                    ),
                    "anthropic": ProviderConfig(enabled=False, api_key="an-key"),
                },
                provider_priority=["openrouter", "openai", "anthropic"],
            ),
        )

    def test_priority_order(self) -> None:
        router = LLMRouter(self._make_config())
        assert router.select_provider() == ("openrouter", "anthropic/claude-sonnet-4.6")

    def test_unhealthy_provider_is_skipped(self) -> None:
        router = LLMRouter(self._make_config())
        router._mark_unhealthy("openrouter")
        assert router.select_provider() == ("openai", "gpt-4o")

    def test_all_unhealthy_falls_back_to_first(self) -> None:
        router = LLMRouter(self._make_config())
        router._mark_unhealthy("openrouter")
        router._mark_unhealthy("openai")
        assert router.select_provider()[0] == "openrouter"

    def test_health_recovers_after_cooldown(self) -> None:
        router = LLMRouter(self._make_config())
        router._provider_failed_at["openrouter"] = 0.0
        assert router.select_provider()[0] == "openrouter"
        assert "openrouter" not in router._provider_failed_at

    def test_model_override(self) -> None:
        router = LLMRouter(self._make_config())
        assert router.select_provider("openai/gpt-4o-mini") == ("openai", "openai/gpt-4o-mini")
        assert router.select_provider("meta/llama-3") == ("openrouter", "meta/llama-3")
        assert router.select_provider("gpt-4o-mini") == ("openai", "gpt-4o-mini")

    def test_no_provider_raises(self) -> None:
        with pytest.raises(RuntimeError, match="No LLM provider"):
            LLMRouter(Config()).select_provider()


class TestComplete:
    @pytest.mark.asyncio
    async def test_builds_litellm_call_and_tracks_cost(self, test_config: Config) -> None:
        router = LLMRouter(test_config)
        mock = AsyncMock(return_value=_litellm_response(content="hello"))
        tools = [{"type": "function", "function": {"name": "x", "parameters": {}}}]

        with patch("core.router.litellm.acompletion", new=mock):
            response = await router.complete(
                [{"role": "user", "content": "hi"}], tools=tools
            )

        kwargs = mock.call_args.kwargs
        assert kwargs["model"] == "openrouter/test/model"
        assert kwargs["api_key"] == "test-key"
        assert kwargs["api_base"] == "https://openrouter.example/api/v1"
        assert kwargs["tools"] == tools
        assert kwargs["temperature"] == test_config.llm.temperature
        assert response.content == "hello"
        assert response.provider == "openrouter"
        assert router.cost_tracker.total == pytest.approx(0.002)
        assert router.cost_tracker.total_tokens == 15

    @pytest.mark.asyncio
    async def test_no_tools_key_without_tools(self, test_config: Config) -> None:
        router = LLMRouter(test_config)
        mock = AsyncMock(return_value=_litellm_response(content="plan"))

        with patch("core.router.litellm.acompletion", new=mock):
            await router.complete([], temperature=0.2, max_tokens=500)

        kwargs = mock.call_args.kwargs
        assert "tools" not in kwargs
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_tool_calls_are_normalized(self, test_config: Config) -> None:
        router = LLMRouter(test_config)
        raw = [_raw_call("call_a", "shell_execute", json.dumps({"command": "ls"}))]
        mock = AsyncMock(return_value=_litellm_response(tool_calls=raw))

        with patch("core.router.litellm.acompletion", new=mock):
            response = await router.complete([])

        step = response.to_step_result()
        assert step.text == ""
        assert [(c.id, c.name, c.args) for c in step.tool_calls] == [
            ("call_a", "shell_execute", {"command": "ls"})
        ]

    @pytest.mark.asyncio
    async def test_failure_marks_provider_unhealthy(self, test_config: Config) -> None:
        router = LLMRouter(test_config)
        mock = AsyncMock(side_effect=ConnectionError("connection reset"))

        with patch("core.router.litellm.acompletion", new=mock):
            with pytest.raises(ConnectionError):
                await router.complete([])

        assert mock.call_count == 1
        assert "openrouter" in router._provider_failed_at


class TestParseToolCalls:
    def test_invalid_json_becomes_empty_args(self) -> None:
        calls = parse_tool_calls(
            [{"id": "c1", "function": {"name": "file_read", "arguments": "{not json"}}]
        )
        assert calls[0].args == {}

    def test_missing_id_and_name(self) -> None:
        calls = parse_tool_calls(
            [
                {"function": {"name": "file_read", "arguments": {"path": "a"}}},
                {"id": "c2", "function": {"arguments": "{}"}},
                {"function": {"name": "file_list", "arguments": "[1, 2]"}},
            ]
        )
        assert [(c.id, c.name, c.args) for c in calls] == [
            ("call_0", "file_read", {"path": "a"}),
            ("call_2", "file_list", {}),
        ]

    def test_none(self) -> None:
        assert parse_tool_calls(None) == []

    def test_response_text_defaults_to_empty(self) -> None:
        response = LLMResponse(
            content=None,
            model_used="m",
            provider="p",
            input_tokens=0,
            output_tokens=0,
            cost_estimate=0.0,
        )
        step = response.to_step_result()
        assert step.text == ""
        assert step.tool_calls == []
        assert step.raw is response
