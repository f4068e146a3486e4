"""Provider metadata and pricing.

Profiles are plain configuration objects. ``default_provider_profiles`` builds
a fresh mapping on every call so that callers can override models or prices
without touching shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ProviderCategory(str, Enum):
    """Broad capability class used for field precedence."""

    REASONING = "reasoning"
    SEARCH = "search"


@dataclass
class ProviderProfile:
    """Static facts about one analysis provider."""

    provider_id: str
    display_name: str
    category: ProviderCategory
    default_model: str
    cost_per_1k_input_tokens: float = 0.0
    cost_per_1k_output_tokens: float = 0.0
    cost_per_request: float = 0.0
    estimated_cost_per_call: float = 0.02
    default_confidence: float = 0.7
    priority: int = 100
    base_url: Optional[str] = None
    requires_api_key: bool = True
    rate_limit_rpm: int = 60

    def cost_for(self, input_tokens: int, output_tokens: int) -> float:
        """Calculate the USD cost of one call from its token usage."""
        input_cost = (max(input_tokens, 0) / 1000) * self.cost_per_1k_input_tokens
        output_cost = (max(output_tokens, 0) / 1000) * self.cost_per_1k_output_tokens
        return round(input_cost + output_cost + self.cost_per_request, 6)


def default_provider_profiles() -> Dict[str, ProviderProfile]:
    """Return the built-in provider profiles keyed by provider id."""
    return {
        "openai": ProviderProfile(
            provider_id="openai",
            display_name="OpenAI",
            category=ProviderCategory.REASONING,
            default_model="gpt-4o",
            cost_per_1k_input_tokens=0.005,
            cost_per_1k_output_tokens=0.015,
            estimated_cost_per_call=0.03,
            default_confidence=0.8,
            priority=1,
            rate_limit_rpm=3500,
        ),
        "anthropic": ProviderProfile(
            provider_id="anthropic",
            display_name="Anthropic",
            category=ProviderCategory.REASONING,
            default_model="claude-3-5-sonnet-20241022",
            cost_per_1k_input_tokens=0.003,
            cost_per_1k_output_tokens=0.015,
            estimated_cost_per_call=0.025,
            default_confidence=0.8,
            priority=2,
            rate_limit_rpm=1000,
        ),
        "gemini": ProviderProfile(
            provider_id="gemini",
            display_name="Google Gemini",
            category=ProviderCategory.REASONING,
            default_model="gemini-1.5-pro",
            cost_per_1k_input_tokens=0.00125,
            cost_per_1k_output_tokens=0.005,
            estimated_cost_per_call=0.02,
            default_confidence=0.7,
            priority=3,
            base_url="https://generativelanguage.googleapis.com/v1beta",
            rate_limit_rpm=360,
        ),
        "perplexity": ProviderProfile(
            provider_id="perplexity",
            display_name="Perplexity",
            category=ProviderCategory.SEARCH,
            default_model="llama-3.1-sonar-large-128k-online",
            cost_per_1k_input_tokens=0.001,
            cost_per_1k_output_tokens=0.001,
            cost_per_request=0.005,
            estimated_cost_per_call=0.01,
            default_confidence=0.75,
            priority=4,
            base_url="https://api.perplexity.ai",
            rate_limit_rpm=50,
        ),
    }
