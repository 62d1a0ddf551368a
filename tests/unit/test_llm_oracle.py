"""
Tests for embeddings, completions and strict verdict parsing.
"""

import json

import httpx
import pytest
from openai import AsyncOpenAI

from fitscore.models.domain.tenant import AIConfig
from fitscore.services.ai.llm_oracle import (
    LLMOracle,
    OracleError,
    OracleResponseError,
    default_ai_config,
    parse_verdict,
)

VERDICT = {"score": 104, "positives": ["Industry"], "negatives": [], "summary": "Strong match."}


def _openai(handler) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key="sk-test",
        base_url="https://api.openai.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def test_parse_verdict_clamps_score():
    verdict = parse_verdict(json.dumps(VERDICT))

    assert verdict.score == 100.0
    assert verdict.positives == ["Industry"]


@pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"positives": []}', '{"score": "high"}'])
def test_parse_verdict_rejects_anything_else(text):
    with pytest.raises(OracleResponseError):
        parse_verdict(text)


@pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
def test_parse_verdict_rejects_non_finite_scores(token):
    with pytest.raises(OracleResponseError):
        parse_verdict('{"score": ' + token + ', "positives": [], "negatives": [], "summary": "x"}')


def test_ai_config_overrides():
    config = default_ai_config({"provider": "Anthropic", "temperature": 0.1, "scoring_prompt": "Be strict."})

    assert config.provider == "anthropic"
    assert config.temperature == 0.1
    assert config.scoring_prompt == "Be strict."


def test_unknown_provider_is_rejected():
    with pytest.raises(OracleError):
        LLMOracle(AIConfig(provider="mystery", model="m", temperature=0, max_tokens=10))


@pytest.mark.asyncio
async def test_embeddings_are_returned_in_input_order():
    def handler(request):
        body = json.loads(request.content)
        assert body["input"] == ["first", "second"]
        return httpx.Response(
            200,
            json={
                "object": "list",
                "model": "text-embedding-3-large",
                "data": [
                    {"object": "embedding", "index": 1, "embedding": [0.2, 0.2]},
                    {"object": "embedding", "index": 0, "embedding": [0.1, 0.1]},
                ],
                "usage": {"prompt_tokens": 2, "total_tokens": 2},
            },
        )

    oracle = LLMOracle(openai_client=_openai(handler))

    assert await oracle.embed(["first", "second"]) == [[0.1, 0.1], [0.2, 0.2]]


@pytest.mark.asyncio
async def test_embedding_failure_raises_oracle_error():
    oracle = LLMOracle(openai_client=_openai(lambda request: httpx.Response(500, json={"error": {}})))

    with pytest.raises(OracleError):
        await oracle.embed(["text"])


@pytest.mark.asyncio
async def test_openai_completion_uses_config_defaults():
    seen = {}

    def handler(request):
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 0,
                "model": "gpt-4o",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": json.dumps(VERDICT)},
                        "finish_reason": "stop",
                    }
                ],
            },
        )

    config = AIConfig(provider="openai", model="gpt-4o", temperature=0.2, max_tokens=300)
    oracle = LLMOracle(config, openai_client=_openai(handler))

    verdict = await oracle.complete("Score this record")

    assert verdict.summary == "Strong match."
    assert seen["temperature"] == 0.2
    assert seen["max_tokens"] == 300
    assert seen["response_format"] == {"type": "json_object"}
    assert seen["messages"][1]["content"] == "Score this record"


@pytest.mark.asyncio
async def test_anthropic_completion(monkeypatch):
    monkeypatch.setattr("fitscore.services.ai.llm_oracle.settings.ANTHROPIC_API_KEY", "ak-test")

    def handler(request):
        assert request.headers["x-api-key"] == "ak-test"
        return httpx.Response(200, json={"content": [{"type": "text", "text": json.dumps(VERDICT)}]})

    config = AIConfig(provider="anthropic", model="claude", temperature=0.0, max_tokens=100)
    oracle = LLMOracle(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    verdict = await oracle.complete("prompt")

    assert verdict.score == 100.0


@pytest.mark.asyncio
async def test_google_completion_without_candidates(monkeypatch):
    monkeypatch.setattr("fitscore.services.ai.llm_oracle.settings.GOOGLE_AI_API_KEY", "gk-test")
    config = AIConfig(provider="google", model="gemini", temperature=0.0, max_tokens=100)
    oracle = LLMOracle(
        config,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
        ),
    )

    with pytest.raises(OracleResponseError):
        await oracle.complete("prompt")


@pytest.mark.asyncio
async def test_provider_http_error(monkeypatch):
    monkeypatch.setattr("fitscore.services.ai.llm_oracle.settings.ANTHROPIC_API_KEY", "ak-test")
    config = AIConfig(provider="anthropic", model="claude", temperature=0.0, max_tokens=100)
    oracle = LLMOracle(
        config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429))),
    )

    with pytest.raises(OracleError) as exc_info:
        await oracle.complete("prompt")
    assert exc_info.value.recoverable is True
