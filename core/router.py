"""LLM Router: selects provider and model, makes calls, tracks cost.

The router makes exactly one provider call per ``complete``; transient
failures surface as exceptions so the agent loop's retry envelope can
decide whether to try again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import litellm

from core.agent import StepResult, ToolCall
from core.config import Config

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True

_DEFAULT_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
}


@dataclass
class LLMResponse:
    """Standardized response from any LLM provider."""

    content: str | None
    model_used: str
    provider: str
    input_tokens: int
    output_tokens: int
    cost_estimate: float
    tool_calls: list[dict[str, Any]] | None = None

    def to_step_result(self) -> StepResult:
        return StepResult(
            text=self.content or "",
            tool_calls=parse_tool_calls(self.tool_calls),
            raw=self,
        )


def parse_tool_calls(raw_calls: list[dict[str, Any]] | None) -> list[ToolCall]:
    """Convert OpenAI-format tool calls into ToolCall objects.

    Arguments that are not valid JSON objects become an empty dict; the
    tool's own validation then reports what is missing.
    """
    calls: list[ToolCall] = []
    for i, tc in enumerate(raw_calls or []):
        fn = tc.get("function") or {}
        name = fn.get("name") or ""
        if not name:
            continue
        args_raw = fn.get("arguments") or "{}"
        if isinstance(args_raw, dict):
            args = args_raw
        else:
            try:
                args = json.loads(args_raw)
            except (json.JSONDecodeError, TypeError):
                logger.warning("Invalid JSON arguments for tool '%s': %s", name, args_raw)
                args = {}
        if not isinstance(args, dict):
            args = {}
        calls.append(ToolCall(id=tc.get("id") or f"call_{i}", name=name, args=args))
    return calls


@dataclass
class CostTracker:
    """Tracks LLM spending per session."""

    total: float = 0.0
    calls: list[dict[str, Any]] = field(default_factory=list)

    def record(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
    ) -> None:
        self.total += cost
        self.calls.append(
            {
                "provider": provider,
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost": cost,
                "timestamp": time.time(),
            }
        )

    @property
    def total_tokens(self) -> int:
        return sum(c["input_tokens"] + c["output_tokens"] for c in self.calls)


class LLMRouter:
    """Routes LLM calls to the first healthy provider in priority order."""

    # Seconds before a failed provider is tried again
    HEALTH_RECOVERY_SECONDS = 60

    def __init__(self, config: Config) -> None:
        self._config = config
        self._cost_tracker = CostTracker()
        self._provider_failed_at: dict[str, float] = {}

    @property
    def cost_tracker(self) -> CostTracker:
        return self._cost_tracker

    def _mark_unhealthy(self, provider: str) -> None:
        self._provider_failed_at[provider] = time.time()

    def _is_healthy(self, provider: str) -> bool:
        failed_at = self._provider_failed_at.get(provider)
        if failed_at is None:
            return True
        if time.time() - failed_at >= self.HEALTH_RECOVERY_SECONDS:
            logger.info("Provider %s health recovered after cooldown", provider)
            del self._provider_failed_at[provider]
            return True
        return False

    def select_provider(self, model_override: str | None = None) -> tuple[str, str]:
        """Pick (provider, model) for the next call."""
        if model_override:
            return self._infer_provider(model_override), model_override

        candidates = [
            name
            for name in self._config.llm.provider_priority
            if (cfg := self._config.llm.providers.get(name))
            and cfg.enabled
            and cfg.default_model
        ]
        for name in candidates:
            if self._is_healthy(name):
                return name, self._config.llm.providers[name].default_model
        # Every provider is cooling down; a cooling provider beats none
        if candidates:
            name = candidates[0]
            return name, self._config.llm.providers[name].default_model

        raise RuntimeError(
            "No LLM provider available. Set llm.providers in config.yaml "
            "or export an API key."
        )

    def _infer_provider(self, model: str) -> str:
        prefix = model.split("/", 1)[0] if "/" in model else ""
        if prefix in self._config.llm.providers:
            return prefix
        return "openrouter" if prefix else "openai"

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model_override: str | None = None,
    ) -> LLMResponse:
        """Make a single LLM call through litellm."""
        provider, model = self.select_provider(model_override)
        logger.info("Routing to %s/%s", provider, model)

        kwargs: dict[str, Any] = {
            "messages": messages,
            "temperature": (
                self._config.llm.temperature if temperature is None else temperature
            ),
            "max_tokens": max_tokens or self._config.llm.max_tokens,
        }
        provider_cfg = self._config.llm.providers.get(provider)
        if provider == "openrouter" and not model.startswith("openrouter/"):
            kwargs["model"] = f"openrouter/{model}"
        elif provider in ("openai", "anthropic") and not model.startswith(f"{provider}/"):
            kwargs["model"] = f"{provider}/{model}"
        else:
            kwargs["model"] = model
        if provider_cfg:
            if provider_cfg.api_key:
                kwargs["api_key"] = provider_cfg.api_key
            if provider_cfg.base_url:
                kwargs["api_base"] = provider_cfg.base_url
        if tools:
            kwargs["tools"] = tools

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            logger.error("litellm call failed (%s/%s): %s", provider, model, e)
            self._mark_unhealthy(provider)
            raise

        choice = response.choices[0]
        message = choice.message

        tool_calls = None
        if getattr(message, "tool_calls", None):
            tool_calls = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.function.name,
                        "arguments": tc.function.arguments,
                    },
                }
                for tc in message.tool_calls
            ]

        usage = getattr(response, "usage", None)
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0
        cost = float(
            (getattr(response, "_hidden_params", None) or {}).get("response_cost", 0)
            or 0
        )
        self._cost_tracker.record(provider, model, input_tokens, output_tokens, cost)

        return LLMResponse(
            content=message.content,
            model_used=model,
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_estimate=cost,
            tool_calls=tool_calls,
        )

    async def health_check(self) -> dict[str, bool]:
        """Check connectivity of every enabled provider in parallel."""

        async def _check(name: str) -> tuple[str, bool]:
            cfg = self._config.llm.providers[name]
            base_url = (cfg.base_url or _DEFAULT_BASE_URLS.get(name, "")).rstrip("/")
            if not base_url:
                return (name, False)
            if name == "anthropic":
                headers = {"x-api-key": cfg.api_key, "anthropic-version": "2023-06-01"}
            else:
                headers = {"Authorization": f"Bearer {cfg.api_key}"}
            try:
                async with httpx.AsyncClient(timeout=5.0) as client:
                    resp = await client.get(f"{base_url}/models", headers=headers)
                    return (name, resp.status_code == 200)
            except httpx.HTTPError as e:
                logger.warning("%s not reachable: %s", name, e)
                return (name, False)

        names = [
            name
            for name, cfg in self._config.llm.providers.items()
            if cfg.enabled and cfg.api_key
        ]
        results: dict[str, bool] = {}
        if names:
            for name, healthy in await asyncio.gather(*(_check(n) for n in names)):
                results[name] = healthy

        logger.info("Provider health: %s", results)
        return results
