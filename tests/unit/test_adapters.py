"""Unit tests for provider adapters.

REST providers are exercised against ``httpx.MockTransport``; SDK providers
get a mocked client that returns SDK-shaped responses or raises the SDK's own
exception types.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from app.services.cost_tracker import CostTracker
from competitoragents.providers.anthropic_adapter import AnthropicAdapter
from competitoragents.providers.base import ProviderCallContext, build_analysis_prompt
from competitoragents.providers.exceptions import APIKeyMissingError, ProviderNotFoundError
from competitoragents.providers.factory import ProviderFactory
from competitoragents.providers.gemini_adapter import GeminiAdapter
from competitoragents.providers.models import ErrorKind
from competitoragents.providers.openai_adapter import OpenAIAdapter
from competitoragents.providers.perplexity_adapter import PerplexityAdapter
from competitoragents.providers.profiles import ProviderCategory, ProviderProfile, default_provider_profiles
from tests.fixtures.scripted_providers import company_payload

TARGET = "Acme Corp"
PROFILES = default_provider_profiles()


def _context(tracker: CostTracker | None = None, attempt: int = 1) -> ProviderCallContext:
    return ProviderCallContext(session_id="session-1", attempt=attempt, cost_observer=tracker)


def _mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _perplexity(handler) -> PerplexityAdapter:
    return PerplexityAdapter(PROFILES["perplexity"], api_key="pplx-test", client=_mock_client(handler))


def _perplexity_body(content: str) -> dict:
    return {
        "model": "sonar",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 100, "completion_tokens": 100},
        "citations": ["https://example.com/acme"],
    }


class TestHttpProviders:
    @pytest.mark.asyncio
    async def test_gemini_success_reports_token_cost(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {"parts": [{"text": json.dumps(company_payload())}]},
                            "finishReason": "STOP",
                        }
                    ],
                    "usageMetadata": {"promptTokenCount": 1000, "candidatesTokenCount": 1000},
                },
            )

        adapter = GeminiAdapter(PROFILES["gemini"], api_key="gemini-test", client=_mock_client(handler))
        tracker = CostTracker("session-1")

        result = await adapter.invoke(TARGET, _context(tracker))

        assert result.succeeded
        assert result.fields["industry"] == "SaaS"
        assert result.confidence == 0.8
        assert result.cost_usd == pytest.approx(0.00625)
        assert tracker.total == pytest.approx(0.00625)
        assert seen["url"].params["key"] == "gemini-test"
        assert seen["url"].path.endswith("/models/gemini-1.5-pro:generateContent")
        assert TARGET in seen["body"]["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_gemini_blocked_prompt_is_invalid_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        adapter = GeminiAdapter(PROFILES["gemini"], api_key="gemini-test", client=_mock_client(handler))

        result = await adapter.invoke(TARGET, _context())

        assert result.error_kind == ErrorKind.INVALID_RESPONSE
        assert "SAFETY" in result.error

    @pytest.mark.asyncio
    async def test_perplexity_sends_bearer_token(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json=_perplexity_body(json.dumps({"latest_news": ["IPO filed"]})))

        result = await _perplexity(handler).invoke(TARGET, _context(attempt=2))

        assert result.succeeded
        assert result.attempt == 2
        assert result.fields == {"recent_developments": ["IPO filed"]}
        assert result.confidence == PROFILES["perplexity"].default_confidence
        assert seen == {"auth": "Bearer pplx-test", "path": "/chat/completions"}

    @pytest.mark.parametrize(
        ("status_code", "kind"),
        [
            (401, ErrorKind.UNAUTHORIZED),
            (403, ErrorKind.UNAUTHORIZED),
            (429, ErrorKind.RATE_LIMITED),
            (504, ErrorKind.TIMEOUT),
            (500, ErrorKind.NETWORK),
            (400, ErrorKind.UNKNOWN),
        ],
    )
    @pytest.mark.asyncio
    async def test_http_status_classification(self, status_code: int, kind: ErrorKind) -> None:
        tracker = CostTracker("session-1")
        adapter = _perplexity(lambda request: httpx.Response(status_code, text="nope"))

        result = await adapter.invoke(TARGET, _context(tracker))

        assert result.error_kind == kind
        assert result.fields == {}
        assert tracker.observation_count == 1
        assert tracker.total == 0.0

    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (httpx.ReadTimeout("slow"), ErrorKind.TIMEOUT),
            (httpx.ConnectError("refused"), ErrorKind.NETWORK),
        ],
    )
    @pytest.mark.asyncio
    async def test_transport_errors(self, exc: Exception, kind: ErrorKind) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc

        result = await _perplexity(handler).invoke(TARGET, _context())

        assert result.error_kind == kind

    @pytest.mark.asyncio
    async def test_unparseable_answer_is_billed_and_invalid(self) -> None:
        tracker = CostTracker("session-1")
        adapter = _perplexity(lambda request: httpx.Response(200, json=_perplexity_body("I cannot help.")))

        result = await adapter.invoke(TARGET, _context(tracker))

        assert result.error_kind == ErrorKind.INVALID_RESPONSE
        assert result.cost_usd == pytest.approx(0.0052)
        assert tracker.total == pytest.approx(0.0052)

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        adapter = _perplexity(lambda request: httpx.Response(200, text="<html>"))

        result = await adapter.invoke(TARGET, _context())

        assert result.error_kind == ErrorKind.INVALID_RESPONSE


def _openai_response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=1000, completion_tokens=1000),
        model="gpt-4o-2024-08-06",
    )


def _openai_adapter(create: AsyncMock) -> OpenAIAdapter:
    client = MagicMock()
    client.chat.completions.create = create
    return OpenAIAdapter(PROFILES["openai"], api_key="sk-test", client=client)


def _status_response(status_code: int, url: str) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", url))


OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


class TestOpenAIAdapter:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        create = AsyncMock(return_value=_openai_response(json.dumps(company_payload(confidence=0.65))))

        result = await _openai_adapter(create).invoke(TARGET, _context())

        assert result.succeeded
        assert result.confidence == 0.65
        assert result.model == "gpt-4o-2024-08-06"
        assert result.cost_usd == pytest.approx(0.02)
        kwargs = create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_empty_content(self) -> None:
        result = await _openai_adapter(AsyncMock(return_value=_openai_response(None))).invoke(
            TARGET, _context()
        )

        assert result.error_kind == ErrorKind.INVALID_RESPONSE

    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (
                openai.RateLimitError("slow down", response=_status_response(429, OPENAI_URL), body=None),
                ErrorKind.RATE_LIMITED,
            ),
            (
                openai.AuthenticationError("bad key", response=_status_response(401, OPENAI_URL), body=None),
                ErrorKind.UNAUTHORIZED,
            ),
            (
                openai.InternalServerError("boom", response=_status_response(503, OPENAI_URL), body=None),
                ErrorKind.NETWORK,
            ),
            (openai.APITimeoutError(request=httpx.Request("POST", OPENAI_URL)), ErrorKind.TIMEOUT),
            (openai.APIConnectionError(request=httpx.Request("POST", OPENAI_URL)), ErrorKind.NETWORK),
        ],
    )
    @pytest.mark.asyncio
    async def test_sdk_errors_are_classified(self, exc: Exception, kind: ErrorKind) -> None:
        result = await _openai_adapter(AsyncMock(side_effect=exc)).invoke(TARGET, _context())

        assert result.error_kind == kind
        assert result.model == "gpt-4o"


def _anthropic_adapter(create: AsyncMock) -> AnthropicAdapter:
    client = MagicMock()
    client.messages.create = create
    return AnthropicAdapter(PROFILES["anthropic"], api_key="sk-ant-test", client=client)


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    async def test_success_with_fenced_json_and_aliases(self) -> None:
        text = "```json\n" + json.dumps({"moat": ["Network effects"], "industry": "SaaS"}) + "\n```"
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=1000, output_tokens=1000),
            model="claude-3-5-sonnet-20241022",
            stop_reason="end_turn",
        )

        result = await _anthropic_adapter(AsyncMock(return_value=response)).invoke(TARGET, _context())

        assert result.succeeded
        assert result.fields == {"competitive_advantages": ["Network effects"], "industry": "SaaS"}
        assert result.confidence == PROFILES["anthropic"].default_confidence
        assert result.cost_usd == pytest.approx(0.018)

    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (
                anthropic.RateLimitError("slow down", response=_status_response(429, ANTHROPIC_URL), body=None),
                ErrorKind.RATE_LIMITED,
            ),
            (
                anthropic.PermissionDeniedError("denied", response=_status_response(403, ANTHROPIC_URL), body=None),
                ErrorKind.UNAUTHORIZED,
            ),
            (anthropic.APIConnectionError(request=httpx.Request("POST", ANTHROPIC_URL)), ErrorKind.NETWORK),
        ],
    )
    @pytest.mark.asyncio
    async def test_sdk_errors_are_classified(self, exc: Exception, kind: ErrorKind) -> None:
        result = await _anthropic_adapter(AsyncMock(side_effect=exc)).invoke(TARGET, _context())

        assert result.error_kind == kind


class TestConfiguration:
    def test_missing_or_malformed_key(self) -> None:
        with pytest.raises(APIKeyMissingError):
            PerplexityAdapter(PROFILES["perplexity"], api_key=None)
        with pytest.raises(APIKeyMissingError):
            PerplexityAdapter(PROFILES["perplexity"], api_key="pplx test")

    def test_unknown_provider(self) -> None:
        profile = ProviderProfile(
            provider_id="mystery",
            display_name="Mystery",
            category=ProviderCategory.SEARCH,
            default_model="m-1",
        )

        with pytest.raises(ProviderNotFoundError):
            ProviderFactory.create_adapter(profile, api_key="key")

    @pytest.mark.asyncio
    async def test_build_adapters_skips_unconfigured(self) -> None:
        adapters = ProviderFactory.build_adapters(
            default_provider_profiles(),
            api_keys={"openai": "sk-test", "anthropic": None, "perplexity": "pplx-test"},
            model_overrides={"openai": "gpt-4o-mini"},
            enabled=["openai", "anthropic"],
        )

        assert list(adapters) == ["openai"]
        assert adapters["openai"].model_name == "gpt-4o-mini"
        for adapter in adapters.values():
            await adapter.aclose()

    def test_profile_cost(self) -> None:
        profile = PROFILES["perplexity"]

        assert profile.cost_for(1000, 2000) == pytest.approx(0.001 + 0.002 + 0.005)
        assert profile.cost_for(-5, 0) == pytest.approx(0.005)

    def test_prompt_mentions_context(self) -> None:
        prompt = build_analysis_prompt(TARGET, {"industry": "Fintech", "focus_areas": ["pricing", "hiring"]})

        assert TARGET in prompt.user
        assert "Fintech" in prompt.user
        assert "pricing, hiring" in prompt.user
        assert "JSON" in prompt.system
