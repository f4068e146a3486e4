"""OpenAI adapter implementation."""

from __future__ import annotations

from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from .base import AnalysisPrompt, BaseProviderAdapter, ProviderCompletion
from .exceptions import (
    InvalidResponseError,
    ProviderNetworkError,
    ProviderTimeoutError,
    RateLimitedError,
    UnauthorizedError,
    error_for_status,
)
from .profiles import ProviderProfile


class OpenAIAdapter(BaseProviderAdapter):
    """Chat-completions adapter using JSON response mode."""

    def __init__(
        self,
        profile: ProviderProfile,
        *,
        client: Optional[AsyncOpenAI] = None,
        **kwargs: Any,
    ):
        super().__init__(profile, **kwargs)
        # Retries are owned by the orchestrator's retry policy.
        self.client = client or AsyncOpenAI(
            api_key=self.api_key,
            base_url=profile.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _complete(self, target: str, prompt: AnalysisPrompt) -> ProviderCompletion:
        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError(f"OpenAI request timed out: {exc}") from exc
        except openai.RateLimitError as exc:
            raise RateLimitedError(f"OpenAI rate limit exceeded: {exc}", status_code=429) from exc
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise UnauthorizedError(
                f"OpenAI rejected credentials: {exc}", status_code=exc.status_code
            ) from exc
        except openai.APIConnectionError as exc:
            raise ProviderNetworkError(f"OpenAI connection failed: {exc}") from exc
        except openai.APIStatusError as exc:
            raise error_for_status(exc.status_code, f"OpenAI API error: {exc}") from exc

        if not response.choices or not response.choices[0].message.content:
            raise InvalidResponseError("OpenAI returned no message content")

        usage = response.usage
        return ProviderCompletion(
            text=response.choices[0].message.content,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=response.model,
            metadata={"finish_reason": response.choices[0].finish_reason},
        )

    async def aclose(self) -> None:
        await self.client.close()
