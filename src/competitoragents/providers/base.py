"""Base classes for competitor-analysis provider adapters."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import httpx
import structlog

from .exceptions import (
    APIKeyMissingError,
    InvalidResponseError,
    ProviderCallError,
    ProviderNetworkError,
    ProviderTimeoutError,
    error_for_status,
)
from .models import CanonicalField, ProviderResult
from .normalization import normalize_fields, parse_json_payload
from .profiles import ProviderProfile

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a competitive intelligence analyst. Answer with a single JSON object "
    "and nothing else."
)

RESPONSE_KEYS = ", ".join(member.value for member in CanonicalField)


class CostObserver(Protocol):
    """Anything that accepts per-attempt cost observations."""

    def record(self, provider: str, cost_usd: float) -> Any: ...


@dataclass(slots=True)
class ProviderCallContext:
    """Per-attempt call settings handed to ``invoke``."""

    session_id: str
    attempt: int = 1
    prompt_context: Dict[str, Any] = field(default_factory=dict)
    cost_observer: Optional[CostObserver] = None


@dataclass(slots=True)
class AnalysisPrompt:
    system: str
    user: str


@dataclass(slots=True)
class ProviderCompletion:
    """Raw answer returned by a transport before normalization."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def build_analysis_prompt(target: str, prompt_context: Mapping[str, Any]) -> AnalysisPrompt:
    """Build the request sent to every provider for one target."""
    lines = [
        f"Analyze the company '{target}' as a competitor.",
        f"Return JSON with these keys when known: {RESPONSE_KEYS}.",
        "List-valued keys (strengths, weaknesses, opportunities, threats, "
        "competitive_advantages, key_products, recent_developments) must be arrays of short strings.",
        "Include a numeric 'confidence' between 0 and 1.",
    ]
    industry = prompt_context.get("industry")
    if industry:
        lines.append(f"The user's own business operates in: {industry}.")
    focus = prompt_context.get("focus_areas")
    if focus:
        lines.append("Focus areas: " + ", ".join(str(item) for item in focus) + ".")
    return AnalysisPrompt(system=SYSTEM_PROMPT, user="\n".join(lines))


class BaseProviderAdapter(ABC):
    """Uniform interface to one external analysis provider.

    Subclasses implement ``_complete`` which performs exactly one transport
    call and raises ``ProviderCallError`` subclasses on failure. ``invoke``
    turns that into a ``ProviderResult`` and reports the attempt's cost.
    """

    field_aliases: Mapping[str, CanonicalField] = {}

    def __init__(
        self,
        profile: ProviderProfile,
        *,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1500,
        timeout: float = 60.0,
    ):
        """Initialize the adapter.

        Args:
            profile: Provider metadata and pricing
            api_key: Credential for the provider; required when the profile says so
            model_name: Model override, defaults to the profile's model
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            timeout: Transport timeout in seconds for a single request
        """
        if profile.requires_api_key:
            if not api_key or not api_key.strip():
                raise APIKeyMissingError(f"{profile.display_name} API key is required")
            if any(char.isspace() for char in api_key.strip()):
                raise APIKeyMissingError(f"{profile.display_name} API key is malformed")
        self.profile = profile
        self.api_key = api_key.strip() if api_key else None
        self.model_name = model_name or profile.default_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    def provider_id(self) -> str:
        return self.profile.provider_id

    async def invoke(self, target: str, context: ProviderCallContext) -> ProviderResult:
        """Run one attempt for ``target`` and return its result.

        Ordinary provider failures are returned as failed results, never
        raised. Configuration and programming errors propagate.
        """
        prompt = build_analysis_prompt(target, context.prompt_context)
        started = time.perf_counter()
        try:
            completion = await self._complete(target, prompt)
        except ProviderCallError as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            self._observe_cost(context, exc.cost_usd)
            logger.warning(
                "provider_call_failed",
                provider=self.provider_id,
                target=target,
                attempt=context.attempt,
                kind=exc.kind.value,
                status_code=exc.status_code,
                error=str(exc),
            )
            return ProviderResult.failure(
                self.provider_id,
                target,
                exc.kind,
                str(exc),
                cost_usd=exc.cost_usd,
                attempt=context.attempt,
                model=self.model_name,
                latency_ms=latency_ms,
            )

        latency_ms = (time.perf_counter() - started) * 1000
        cost = self.profile.cost_for(completion.input_tokens, completion.output_tokens)
        self._observe_cost(context, cost)

        try:
            fields, confidence = self.normalize(completion)
        except InvalidResponseError as exc:
            logger.warning(
                "provider_response_invalid",
                provider=self.provider_id,
                target=target,
                attempt=context.attempt,
                error=str(exc),
            )
            return ProviderResult.failure(
                self.provider_id,
                target,
                exc.kind,
                str(exc),
                cost_usd=cost,
                attempt=context.attempt,
                model=completion.model or self.model_name,
                latency_ms=latency_ms,
            )

        return ProviderResult(
            provider=self.provider_id,
            target=target,
            fields=fields,
            confidence=confidence,
            cost_usd=cost,
            attempt=context.attempt,
            model=completion.model or self.model_name,
            latency_ms=latency_ms,
        )

    def normalize(self, completion: ProviderCompletion) -> Tuple[Dict[str, Any], Optional[float]]:
        """Convert a completion into canonical fields and a 0-1 confidence."""
        payload = parse_json_payload(completion.text)
        fields, confidence = normalize_fields(payload, self.field_aliases)
        if not fields:
            raise InvalidResponseError("Provider response contained no recognizable fields")
        if confidence is None:
            confidence = self.profile.default_confidence
        return fields, confidence

    def _observe_cost(self, context: ProviderCallContext, cost_usd: float) -> None:
        if context.cost_observer is not None:
            context.cost_observer.record(self.provider_id, cost_usd)

    @abstractmethod
    async def _complete(self, target: str, prompt: AnalysisPrompt) -> ProviderCompletion:
        """Perform one transport call.

        Raises:
            ProviderCallError: On any provider-side failure
        """

    async def aclose(self) -> None:
        """Release transport resources."""


class HttpProviderAdapter(BaseProviderAdapter):
    """Adapter base for providers reached through plain REST calls."""

    def __init__(
        self,
        profile: ProviderProfile,
        *,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ):
        super().__init__(profile, **kwargs)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post_json(
        self,
        url: str,
        *,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST ``payload`` and return the decoded JSON body."""
        try:
            response = await self._get_client().post(
                url, json=payload, headers=headers, params=params
            )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.profile.display_name} request timed out") from exc
        except httpx.TransportError as exc:
            raise ProviderNetworkError(
                f"{self.profile.display_name} connection failed: {exc}"
            ) from exc

        if response.status_code >= 400:
            raise error_for_status(
                response.status_code,
                f"{self.profile.display_name} API error {response.status_code}: "
                f"{response.text[:200]}",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                f"{self.profile.display_name} returned a non-JSON body"
            ) from exc
        if not isinstance(body, dict):
            raise InvalidResponseError(f"{self.profile.display_name} returned an unexpected body")
        return body

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
