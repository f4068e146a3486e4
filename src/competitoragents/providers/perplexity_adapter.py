"""Perplexity adapter; search-augmented answers with citations."""

from __future__ import annotations

from .base import AnalysisPrompt, HttpProviderAdapter, ProviderCompletion
from .exceptions import InvalidResponseError
from .models import CanonicalField


class PerplexityAdapter(HttpProviderAdapter):
    """OpenAI-compatible chat completions endpoint of Perplexity."""

    field_aliases = {
        "latest_news": CanonicalField.RECENT_DEVELOPMENTS,
        "price": CanonicalField.PRICING,
        "founding_year": CanonicalField.FOUNDED_YEAR,
    }

    async def _complete(self, target: str, prompt: AnalysisPrompt) -> ProviderCompletion:
        body = await self._post_json(
            f"{self.profile.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            payload={
                "model": self.model_name,
                "messages": [
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
        )

        choices = body.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        text = message.get("content")
        if not text:
            raise InvalidResponseError("Perplexity returned no message content")

        usage = body.get("usage") or {}
        return ProviderCompletion(
            text=text,
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
            model=body.get("model") or self.model_name,
            metadata={"citations": list(body.get("citations") or [])},
        )
