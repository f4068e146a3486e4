"""Provider adapters for competitor analysis."""

from competitoragents.providers.base import (
    AnalysisPrompt,
    BaseProviderAdapter,
    CostObserver,
    HttpProviderAdapter,
    ProviderCallContext,
    ProviderCompletion,
    build_analysis_prompt,
)
from competitoragents.providers.exceptions import (
    APIKeyMissingError,
    InvalidResponseError,
    ProviderCallError,
    ProviderConfigurationError,
    ProviderError,
    ProviderNetworkError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    RateLimitedError,
    UnauthorizedError,
)
from competitoragents.providers.factory import ProviderFactory
from competitoragents.providers.models import (
    FACT_FIELDS,
    LIST_FIELDS,
    CanonicalField,
    ErrorKind,
    ProviderResult,
)
from competitoragents.providers.profiles import (
    ProviderCategory,
    ProviderProfile,
    default_provider_profiles,
)

__all__ = [
    "APIKeyMissingError",
    "AnalysisPrompt",
    "BaseProviderAdapter",
    "CanonicalField",
    "CostObserver",
    "ErrorKind",
    "FACT_FIELDS",
    "HttpProviderAdapter",
    "InvalidResponseError",
    "LIST_FIELDS",
    "ProviderCallContext",
    "ProviderCallError",
    "ProviderCategory",
    "ProviderCompletion",
    "ProviderConfigurationError",
    "ProviderError",
    "ProviderFactory",
    "ProviderNetworkError",
    "ProviderNotFoundError",
    "ProviderProfile",
    "ProviderResult",
    "ProviderTimeoutError",
    "RateLimitedError",
    "UnauthorizedError",
    "build_analysis_prompt",
    "default_provider_profiles",
]
