from __future__ import annotations

from types import SimpleNamespace

import pytest

from newsdesk.llm_client import LLMClient, LLMClientError, LLMResponse, summarize_costs


class _Completions:
    def __init__(self, *outcomes) -> None:  # noqa: ANN002
        self._outcomes = list(outcomes)
        self.kwargs: list[dict] = []

    async def create(self, **kwargs):  # noqa: ANN003
        self.kwargs.append(kwargs)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _completion(text: str, prompt_tokens: int, completion_tokens: int) -> SimpleNamespace:
    return SimpleNamespace(
        model="gpt-test",
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
    )


def _client(*outcomes) -> tuple[LLMClient, _Completions]:  # noqa: ANN002
    client = LLMClient(
        "openai", "sk-test", "http://llm.invalid/v1", "gpt-test",
        input_cost_per_m=2.0, output_cost_per_m=8.0, max_retries=2, backoff_base=0.0,
    )
    completions = _Completions(*outcomes)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return client, completions


def test_price_is_per_million_tokens() -> None:
    client, _ = _client()
    assert client.price(1_000_000, 0) == pytest.approx(2.0)
    assert client.price(500, 250) == pytest.approx(0.003)


@pytest.mark.asyncio
async def test_complete_returns_text_with_usage() -> None:
    client, completions = _client(_completion('{"ok": true}', 1000, 200))

    response = await client.complete("system", "user", json_mode=True)

    assert response.text == '{"ok": true}'
    assert response.usage() == {
        "model": "gpt-test", "input_tokens": 1000, "output_tokens": 200, "cost_usd": 0.0036,
    }
    assert completions.kwargs[0]["response_format"] == {"type": "json_object"}
    assert client.get_stats() == {"model": "gpt-test", "calls": 1, "failures": 0, "spent_usd": 0.0036}


@pytest.mark.asyncio
async def test_complete_retries_then_raises() -> None:
    client, _ = _client(ConnectionError("reset"), _completion("{}", 10, 5))
    assert (await client.complete("s", "u")).text == "{}"

    client, _ = _client(ConnectionError("reset"), TimeoutError("slow"))
    with pytest.raises(LLMClientError):
        await client.complete("s", "u")
    assert client.get_stats()["failures"] == 1


def test_summarize_costs_totals_stages() -> None:
    stages = {
        "classify": LLMResponse("{}", "small", 100, 50, 0.0004).usage(),
        "decide": LLMResponse("{}", "large", 900, 300, 0.0072).usage(),
    }
    summary = summarize_costs(stages)
    assert summary["total_usd"] == pytest.approx(0.0076)
    assert summary["stages"]["decide"]["input_tokens"] == 900
    assert summarize_costs({}) == {"stages": {}, "total_usd": 0}
