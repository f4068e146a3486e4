"""Google Gemini adapter over the public REST API."""

from __future__ import annotations

from .base import AnalysisPrompt, HttpProviderAdapter, ProviderCompletion
from .exceptions import InvalidResponseError


class GeminiAdapter(HttpProviderAdapter):
    """``generateContent`` adapter."""

    async def _complete(self, target: str, prompt: AnalysisPrompt) -> ProviderCompletion:
        body = await self._post_json(
            f"{self.profile.base_url}/models/{self.model_name}:generateContent",
            params={"key": self.api_key or ""},
            payload={
                "systemInstruction": {"parts": [{"text": prompt.system}]},
                "contents": [{"role": "user", "parts": [{"text": prompt.user}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                    "responseMimeType": "application/json",
                },
            },
        )

        block_reason = (body.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise InvalidResponseError(f"Gemini blocked the prompt: {block_reason}")

        candidates = body.get("candidates") or []
        if not candidates:
            raise InvalidResponseError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text:
            raise InvalidResponseError("Gemini returned an empty candidate")

        usage = body.get("usageMetadata") or {}
        return ProviderCompletion(
            text=text,
            input_tokens=int(usage.get("promptTokenCount", 0)),
            output_tokens=int(usage.get("candidatesTokenCount", 0)),
            model=body.get("modelVersion") or self.model_name,
            metadata={"finish_reason": candidates[0].get("finishReason")},
        )
