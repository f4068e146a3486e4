"""Canonical result types shared by every provider adapter."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ErrorKind(str, Enum):
    """Classification attached to a failed provider call."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    INVALID_RESPONSE = "invalid_response"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"
    GATE_DENIED = "gate_denied"
    CANCELLED = "cancelled"

    @property
    def is_transient(self) -> bool:
        return self in TRANSIENT_ERROR_KINDS


TRANSIENT_ERROR_KINDS: FrozenSet[ErrorKind] = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.NETWORK}
)
PERMANENT_ERROR_KINDS: FrozenSet[ErrorKind] = frozenset(
    {ErrorKind.UNAUTHORIZED, ErrorKind.INVALID_RESPONSE}
)


class CanonicalField(str, Enum):
    """Every field an adapter may place into ``ProviderResult.fields``."""

    DESCRIPTION = "description"
    INDUSTRY = "industry"
    BUSINESS_MODEL = "business_model"
    HEADQUARTERS = "headquarters"
    FOUNDED_YEAR = "founded_year"
    EMPLOYEE_COUNT = "employee_count"
    WEBSITE = "website"
    FUNDING = "funding"
    MARKET_POSITION = "market_position"
    PRICING = "pricing"
    TARGET_MARKET = "target_market"
    THREAT_LEVEL = "threat_level"
    STRENGTHS = "strengths"
    WEAKNESSES = "weaknesses"
    OPPORTUNITIES = "opportunities"
    THREATS = "threats"
    COMPETITIVE_ADVANTAGES = "competitive_advantages"
    KEY_PRODUCTS = "key_products"
    RECENT_DEVELOPMENTS = "recent_developments"

    @property
    def is_list(self) -> bool:
        return self in LIST_FIELDS


LIST_FIELDS: FrozenSet[CanonicalField] = frozenset(
    {
        CanonicalField.STRENGTHS,
        CanonicalField.WEAKNESSES,
        CanonicalField.OPPORTUNITIES,
        CanonicalField.THREATS,
        CanonicalField.COMPETITIVE_ADVANTAGES,
        CanonicalField.KEY_PRODUCTS,
        CanonicalField.RECENT_DEVELOPMENTS,
    }
)

# Fields that are looked up rather than reasoned about.
FACT_FIELDS: FrozenSet[CanonicalField] = frozenset(
    {
        CanonicalField.INDUSTRY,
        CanonicalField.HEADQUARTERS,
        CanonicalField.FOUNDED_YEAR,
        CanonicalField.EMPLOYEE_COUNT,
        CanonicalField.WEBSITE,
        CanonicalField.FUNDING,
        CanonicalField.PRICING,
    }
)


class ProviderResult(BaseModel):
    """Outcome of one provider call for one target.

    A result is either a success (``error`` is ``None``) carrying canonical
    fields, or a terminal failure carrying an error message and kind with no
    fields. Instances are immutable.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    target: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = None
    cost_usd: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempt: int = 1
    model: Optional[str] = None
    latency_ms: Optional[float] = None

    @field_validator("fields")
    @classmethod
    def validate_canonical_fields(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        """Reject anything outside the canonical field enumeration."""
        return {CanonicalField(key).value: item for key, item in value.items()}

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not 0.0 <= value <= 1.0:
            raise ValueError("confidence must be within [0, 1]")
        return value

    @field_validator("cost_usd")
    @classmethod
    def validate_cost(cls, value: float) -> float:
        if value < 0:
            raise ValueError("cost_usd cannot be negative")
        return value

    @model_validator(mode="before")
    @classmethod
    def default_error_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("error") and not data.get("error_kind"):
            data = {**data, "error_kind": ErrorKind.UNKNOWN}
        return data

    @model_validator(mode="after")
    def validate_error_shape(self) -> "ProviderResult":
        if self.error is not None and self.fields:
            raise ValueError("failed results must not carry fields")
        if self.error is None and self.error_kind is not None:
            raise ValueError("error_kind requires an error message")
        return self

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def failure(
        cls,
        provider: str,
        target: str,
        kind: ErrorKind,
        message: str,
        *,
        cost_usd: float = 0.0,
        attempt: int = 1,
        model: Optional[str] = None,
        latency_ms: Optional[float] = None,
    ) -> "ProviderResult":
        """Build a terminal failure result."""
        return cls(
            provider=provider,
            target=target,
            error=message or kind.value,
            error_kind=kind,
            cost_usd=cost_usd,
            attempt=attempt,
            model=model,
            latency_ms=latency_ms,
        )


__all__ = [
    "CanonicalField",
    "ErrorKind",
    "FACT_FIELDS",
    "LIST_FIELDS",
    "PERMANENT_ERROR_KINDS",
    "ProviderResult",
    "TRANSIENT_ERROR_KINDS",
]
