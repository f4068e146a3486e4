"""Anthropic adapter implementation."""

from __future__ import annotations

from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic

from .base import AnalysisPrompt, BaseProviderAdapter, ProviderCompletion
from .exceptions import (
    InvalidResponseError,
    ProviderNetworkError,
    ProviderTimeoutError,
    RateLimitedError,
    UnauthorizedError,
    error_for_status,
)
from .models import CanonicalField
from .profiles import ProviderProfile


class AnthropicAdapter(BaseProviderAdapter):
    """Messages API adapter."""

    field_aliases = {
        "market_positioning": CanonicalField.MARKET_POSITION,
        "moat": CanonicalField.COMPETITIVE_ADVANTAGES,
    }

    def __init__(
        self,
        profile: ProviderProfile,
        *,
        client: Optional[AsyncAnthropic] = None,
        **kwargs: Any,
    ):
        super().__init__(profile, **kwargs)
        self.client = client or AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _complete(self, target: str, prompt: AnalysisPrompt) -> ProviderCompletion:
        try:
            response = await self.client.messages.create(
                model=self.model_name,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=prompt.system,
                messages=[{"role": "user", "content": prompt.user}],
            )
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeoutError(f"Claude request timed out: {exc}") from exc
        except anthropic.RateLimitError as exc:
            raise RateLimitedError(f"Claude rate limit exceeded: {exc}", status_code=429) from exc
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise UnauthorizedError(
                f"Claude rejected credentials: {exc}", status_code=exc.status_code
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderNetworkError(f"Claude connection failed: {exc}") from exc
        except anthropic.APIStatusError as exc:
            raise error_for_status(exc.status_code, f"Claude API error: {exc}") from exc

        text = "".join(
            getattr(block, "text", "")
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        if not text:
            raise InvalidResponseError("Claude returned no text content")

        return ProviderCompletion(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
            metadata={"stop_reason": response.stop_reason},
        )

    async def aclose(self) -> None:
        await self.client.close()
