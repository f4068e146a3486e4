"""Factory for building provider adapters from profiles."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type

import structlog

from .anthropic_adapter import AnthropicAdapter
from .base import BaseProviderAdapter
from .exceptions import ProviderConfigurationError, ProviderNotFoundError
from .gemini_adapter import GeminiAdapter
from .openai_adapter import OpenAIAdapter
from .perplexity_adapter import PerplexityAdapter
from .profiles import ProviderProfile

logger = structlog.get_logger(__name__)


class ProviderFactory:
    """Creates adapters for the built-in provider ids."""

    _adapters: Dict[str, Type[BaseProviderAdapter]] = {
        "openai": OpenAIAdapter,
        "anthropic": AnthropicAdapter,
        "gemini": GeminiAdapter,
        "perplexity": PerplexityAdapter,
    }

    @classmethod
    def supported_providers(cls) -> list[str]:
        return list(cls._adapters)

    @classmethod
    def create_adapter(
        cls,
        profile: ProviderProfile,
        *,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        **kwargs: Any,
    ) -> BaseProviderAdapter:
        """Create the adapter for ``profile.provider_id``.

        Raises:
            ProviderNotFoundError: If no implementation exists for the provider
            APIKeyMissingError: If the credential is missing or malformed
        """
        adapter_cls = cls._adapters.get(profile.provider_id)
        if adapter_cls is None:
            raise ProviderNotFoundError(f"No adapter for provider '{profile.provider_id}'")
        return adapter_cls(profile, api_key=api_key, model_name=model_name, **kwargs)

    @classmethod
    def build_adapters(
        cls,
        profiles: Mapping[str, ProviderProfile],
        *,
        api_keys: Mapping[str, Optional[str]],
        model_overrides: Optional[Mapping[str, Optional[str]]] = None,
        enabled: Optional[list[str]] = None,
        timeout: float = 60.0,
    ) -> Dict[str, BaseProviderAdapter]:
        """Build every adapter that has usable configuration.

        Providers without credentials are skipped and logged; they stay
        visible to the gate as ``not_configured``.
        """
        adapters: Dict[str, BaseProviderAdapter] = {}
        overrides = model_overrides or {}
        for provider_id, profile in profiles.items():
            if enabled is not None and provider_id not in enabled:
                continue
            try:
                adapters[provider_id] = cls.create_adapter(
                    profile,
                    api_key=api_keys.get(provider_id),
                    model_name=overrides.get(provider_id),
                    timeout=timeout,
                )
            except ProviderConfigurationError as exc:
                logger.warning("provider_not_configured", provider=provider_id, reason=str(exc))
        return adapters
