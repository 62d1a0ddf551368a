"""
Embedding and completion oracle.

Embeddings always come from OpenAI. Completions go to the provider named in the
tenant's AI config: OpenAI through its SDK, Anthropic and Google through their
HTTP APIs.
"""

import json

import httpx
import openai
import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.scoring import OracleVerdict
from fitscore.models.domain.tenant import AIConfig

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
GOOGLE_GENERATE_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

SUPPORTED_PROVIDERS = ("openai", "anthropic", "google")

SYSTEM_MESSAGE = """You are an expert at judging how well a CRM record matches a company's ideal client profile.

Return ONLY a JSON object (no markdown, no prose) with exactly these fields:
{"score": <number 0-100>, "positives": [<short strings>], "negatives": [<short strings>], "summary": "<2-3 sentences>"}

- score: 0 means nothing like the ideal client, 100 means an exact match
- positives / negatives: the concrete factors that raised or lowered the score
- Weigh the reference records and their scores heavily when they are provided"""


class OracleError(Exception):
    """Base exception for oracle errors."""

    def __init__(self, message: str, provider: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.provider = provider
        self.recoverable = recoverable


class OracleResponseError(OracleError):
    """The completion was not the strict JSON verdict that was asked for."""


def default_ai_config(overrides: dict | None = None) -> AIConfig:
    """Settings-level AI config with optional per-tenant overrides applied."""
    overrides = overrides or {}
    provider = str(overrides.get("provider") or settings.LLM_PROVIDER).lower()
    default_models = {
        "openai": settings.OPENAI_MODEL,
        "anthropic": settings.ANTHROPIC_MODEL,
        "google": settings.GOOGLE_AI_MODEL,
    }
    return AIConfig(
        provider=provider,
        model=overrides.get("model") or default_models.get(provider, settings.OPENAI_MODEL),
        temperature=float(overrides.get("temperature", settings.LLM_TEMPERATURE)),
        max_tokens=int(overrides.get("max_tokens", settings.LLM_MAX_TOKENS)),
        scoring_prompt=overrides.get("scoring_prompt"),
    )


def parse_verdict(text: str) -> OracleVerdict:
    """Parse the completion as strict JSON into a verdict."""
    try:
        payload = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise OracleResponseError(f"Completion was not valid JSON: {e}", recoverable=False) from e
    if not isinstance(payload, dict):
        raise OracleResponseError("Completion JSON was not an object", recoverable=False)
    try:
        return OracleVerdict.model_validate(payload)
    except ValidationError as e:
        raise OracleResponseError(f"Completion JSON had the wrong shape: {e}", recoverable=False) from e


class LLMOracle:
    def __init__(
        self,
        ai_config: AIConfig | None = None,
        *,
        openai_client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.config = ai_config or default_ai_config()
        if self.config.provider not in SUPPORTED_PROVIDERS:
            raise OracleError(f"Unsupported AI provider: {self.config.provider}", recoverable=False)

        self._openai = openai_client
        self._http = http_client
        self._log = component_logger(
            __name__, logger, component="llm_oracle", provider=self.config.provider
        )

    def _openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            if not settings.OPENAI_API_KEY:
                raise OracleError("OPENAI_API_KEY not configured", provider="openai", recoverable=False)
            self._openai = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS
            )
        return self._openai

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(settings.LLM_TIMEOUT_SECONDS))
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
        if self._openai is not None:
            await self._openai.close()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """One embedding request for ``texts``; output order matches input order."""
        if not texts:
            return []
        try:
            response = await self._openai_client().embeddings.create(
                model=settings.OPENAI_EMBEDDING_MODEL,
                input=texts,
                encoding_format="float",
            )
        except openai.OpenAIError as e:
            self._log.error("Embedding request failed", error=str(e), batch_size=len(texts))
            raise OracleError(f"Embedding request failed: {e}", provider="openai") from e

        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> OracleVerdict:
        temperature = self.config.temperature if temperature is None else temperature
        max_tokens = self.config.max_tokens if max_tokens is None else max_tokens

        if self.config.provider == "openai":
            text = await self._complete_openai(prompt, temperature, max_tokens)
        elif self.config.provider == "anthropic":
            text = await self._complete_anthropic(prompt, temperature, max_tokens)
        else:
            text = await self._complete_google(prompt, temperature, max_tokens)

        verdict = parse_verdict(text)
        self._log.info("Completion parsed", model=self.config.model, score=verdict.score)
        return verdict

    async def _complete_openai(self, prompt: str, temperature: float, max_tokens: int) -> str:
        try:
            response = await self._openai_client().chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.RateLimitError as e:
            raise OracleError(f"OpenAI rate limit: {e}", provider="openai") from e
        except openai.OpenAIError as e:
            self._log.error("OpenAI completion failed", error=str(e))
            raise OracleError(f"OpenAI completion failed: {e}", provider="openai") from e

        return response.choices[0].message.content or ""

    async def _post_json(self, url: str, headers: dict, body: dict, provider: str) -> dict:
        try:
            response = await self._http_client().post(url, headers=headers, json=body)
        except httpx.RequestError as e:
            raise OracleError(f"{provider} request failed: {e}", provider=provider) from e
        if not response.is_success:
            self._log.error(
                "Completion provider error",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise OracleError(
                f"{provider} API error (HTTP {response.status_code})",
                provider=provider,
                recoverable=response.status_code >= 500 or response.status_code == 429,
            )
        return response.json()

    async def _complete_anthropic(self, prompt: str, temperature: float, max_tokens: int) -> str:
        if not settings.ANTHROPIC_API_KEY:
            raise OracleError("ANTHROPIC_API_KEY not configured", provider="anthropic", recoverable=False)
        data = await self._post_json(
            ANTHROPIC_MESSAGES_URL,
            {
                "x-api-key": settings.ANTHROPIC_API_KEY,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            {
                "model": self.config.model,
                "system": SYSTEM_MESSAGE,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            "anthropic",
        )
        blocks = [block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"]
        return "".join(blocks)

    async def _complete_google(self, prompt: str, temperature: float, max_tokens: int) -> str:
        if not settings.GOOGLE_AI_API_KEY:
            raise OracleError("GOOGLE_AI_API_KEY not configured", provider="google", recoverable=False)
        data = await self._post_json(
            GOOGLE_GENERATE_URL.format(model=self.config.model),
            {"x-goog-api-key": settings.GOOGLE_AI_API_KEY, "Content-Type": "application/json"},
            {
                "systemInstruction": {"parts": [{"text": SYSTEM_MESSAGE}]},
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": temperature,
                    "maxOutputTokens": max_tokens,
                    "responseMimeType": "application/json",
                },
            },
            "google",
        )
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError) as e:
            raise OracleResponseError("Google response had no candidate text", provider="google") from e
