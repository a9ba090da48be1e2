"""Async LLM client over OpenAI-compatible chat completion endpoints.

Every call returns an ``LLMResponse`` carrying the text together with the
token counts and dollar cost of that one call, so the orchestrator can attach
a per-stage cost breakdown to each analysis. Prices are configured per tier in
USD per million tokens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI

from newsdesk.config import get_settings

logger = logging.getLogger(__name__)


class LLMClientError(RuntimeError):
    """All retries against the provider failed."""


@dataclass(frozen=True)
class LLMResponse:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0

    def usage(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "input_tokens": self.prompt_tokens,
            "output_tokens": self.completion_tokens,
            "cost_usd": round(self.cost_usd, 6),
        }


def summarize_costs(stages: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Per-stage usage plus the total spend of one analysis."""
    return {
        "stages": {name: dict(u) for name, u in stages.items()},
        "total_usd": round(sum(u.get("cost_usd", 0.0) for u in stages.values()), 6),
    }


class LLMClient:
    """JSON-mode chat completions for one pipeline tier."""

    def __init__(
        self,
        provider: str,
        api_key: str,
        base_url: str,
        model: str,
        *,
        input_cost_per_m: float = 0.0,
        output_cost_per_m: float = 0.0,
        max_retries: int = 3,
        backoff_base: float = 2.0,
    ) -> None:
        self.provider = provider
        self.model = model
        self.input_cost_per_m = input_cost_per_m
        self.output_cost_per_m = output_cost_per_m
        self.max_retries = max_retries
        self.backoff_base = backoff_base

        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

        self.calls = 0
        self.failures = 0
        self.spent_usd = 0.0

    def price(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * self.input_cost_per_m + completion_tokens * self.output_cost_per_m) / 1_000_000

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        last_exc: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.chat.completions.create(**kwargs)
            except Exception as exc:
                last_exc = exc
                if attempt >= self.max_retries:
                    break
                wait = self.backoff_base ** attempt
                logger.warning(
                    "[llm] %s/%s attempt %d/%d failed: %s, retrying in %.1fs",
                    self.provider, self.model, attempt, self.max_retries, exc, wait,
                )
                await asyncio.sleep(wait)
                continue

            usage = response.usage
            prompt_tokens = usage.prompt_tokens if usage else 0
            completion_tokens = usage.completion_tokens if usage else 0
            cost = self.price(prompt_tokens, completion_tokens)
            self.calls += 1
            self.spent_usd += cost
            logger.debug(
                "[llm] %s/%s prompt=%d completion=%d cost=$%.5f",
                self.provider, self.model, prompt_tokens, completion_tokens, cost,
            )
            return LLMResponse(
                text=response.choices[0].message.content or "",
                model=response.model or self.model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                cost_usd=cost,
            )

        self.failures += 1
        raise LLMClientError(f"{self.provider}/{self.model} failed after {self.max_retries} attempts: {last_exc}") from last_exc

    async def close(self) -> None:
        await self._client.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "calls": self.calls,
            "failures": self.failures,
            "spent_usd": round(self.spent_usd, 4),
        }


_clients: dict[str, LLMClient] = {}


def _tier_client(tier: str) -> LLMClient:
    if tier not in _clients:
        s = get_settings()
        _clients[tier] = LLMClient(
            provider=getattr(s, f"{tier}_provider"),
            api_key=getattr(s, f"{tier}_api_key"),
            base_url=getattr(s, f"{tier}_base_url"),
            model=getattr(s, f"{tier}_model"),
            input_cost_per_m=getattr(s, f"{tier}_input_cost_per_m"),
            output_cost_per_m=getattr(s, f"{tier}_output_cost_per_m"),
        )
    return _clients[tier]


def get_classifier_client() -> LLMClient:
    """Shared client for the classification stage."""
    return _tier_client("classifier")


def get_decider_client() -> LLMClient:
    """Shared client for the decision stage."""
    return _tier_client("decider")
