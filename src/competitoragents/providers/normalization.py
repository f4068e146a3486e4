"""Translate raw provider payloads into canonical fields.

Providers answer with loosely structured JSON whose keys drift between models
and prompt revisions. Everything shape-related is resolved here so downstream
code only sees ``CanonicalField`` keys with cleaned values.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import InvalidResponseError
from .models import CanonicalField

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")

# Keys whose value is an object that holds further canonical keys.
NESTED_CONTAINERS = frozenset(
    {"swot", "swot_analysis", "analysis", "company_profile", "profile", "competitor"}
)

CONFIDENCE_KEYS = ("confidence", "confidence_score", "confidence_level")

COMMON_FIELD_ALIASES: Dict[str, CanonicalField] = {
    "description": CanonicalField.DESCRIPTION,
    "overview": CanonicalField.DESCRIPTION,
    "company_overview": CanonicalField.DESCRIPTION,
    "summary": CanonicalField.DESCRIPTION,
    "industry": CanonicalField.INDUSTRY,
    "sector": CanonicalField.INDUSTRY,
    "industry_classification": CanonicalField.INDUSTRY,
    "business_model": CanonicalField.BUSINESS_MODEL,
    "revenue_model": CanonicalField.BUSINESS_MODEL,
    "headquarters": CanonicalField.HEADQUARTERS,
    "hq": CanonicalField.HEADQUARTERS,
    "location": CanonicalField.HEADQUARTERS,
    "founded_year": CanonicalField.FOUNDED_YEAR,
    "founded": CanonicalField.FOUNDED_YEAR,
    "year_founded": CanonicalField.FOUNDED_YEAR,
    "employee_count": CanonicalField.EMPLOYEE_COUNT,
    "employees": CanonicalField.EMPLOYEE_COUNT,
    "company_size": CanonicalField.EMPLOYEE_COUNT,
    "website": CanonicalField.WEBSITE,
    "url": CanonicalField.WEBSITE,
    "funding": CanonicalField.FUNDING,
    "funding_status": CanonicalField.FUNDING,
    "total_funding": CanonicalField.FUNDING,
    "market_position": CanonicalField.MARKET_POSITION,
    "position": CanonicalField.MARKET_POSITION,
    "market_share": CanonicalField.MARKET_POSITION,
    "pricing": CanonicalField.PRICING,
    "pricing_strategy": CanonicalField.PRICING,
    "pricing_model": CanonicalField.PRICING,
    "target_market": CanonicalField.TARGET_MARKET,
    "target_markets": CanonicalField.TARGET_MARKET,
    "target_audience": CanonicalField.TARGET_MARKET,
    "threat_level": CanonicalField.THREAT_LEVEL,
    "strengths": CanonicalField.STRENGTHS,
    "weaknesses": CanonicalField.WEAKNESSES,
    "opportunities": CanonicalField.OPPORTUNITIES,
    "threats": CanonicalField.THREATS,
    "competitive_advantages": CanonicalField.COMPETITIVE_ADVANTAGES,
    "competitive_advantage": CanonicalField.COMPETITIVE_ADVANTAGES,
    "differentiators": CanonicalField.COMPETITIVE_ADVANTAGES,
    "key_products": CanonicalField.KEY_PRODUCTS,
    "products": CanonicalField.KEY_PRODUCTS,
    "product_offerings": CanonicalField.KEY_PRODUCTS,
    "recent_developments": CanonicalField.RECENT_DEVELOPMENTS,
    "recent_news": CanonicalField.RECENT_DEVELOPMENTS,
    "news": CanonicalField.RECENT_DEVELOPMENTS,
}


def normalize_key(key: str) -> str:
    """``marketPosition`` / ``Market Position`` / ``market-position`` -> ``market_position``."""
    key = _CAMEL_BOUNDARY.sub("_", key.strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


def parse_json_payload(text: str) -> Dict[str, Any]:
    """Extract the JSON object a model returned, tolerating code fences."""
    if not text or not text.strip():
        raise InvalidResponseError("Provider returned an empty response")

    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        payload = json.loads(cleaned)
    except ValueError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise InvalidResponseError("Provider response is not JSON") from None
        try:
            payload = json.loads(cleaned[start : end + 1])
        except ValueError as exc:
            raise InvalidResponseError(f"Provider response is not JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise InvalidResponseError("Provider response must be a JSON object")
    return payload


def normalize_confidence(value: Any) -> Optional[float]:
    """Coerce a provider confidence into the 0-1 range.

    Percentages (``85``) and strings (``"85%"``) are accepted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    if number > 1:
        number = number / 100 if number <= 100 else 1.0
    return round(number, 4)


def _clean_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable[Any] = re.split(r"[\n;]+", value)
    elif isinstance(value, Mapping):
        items = value.values()
    elif isinstance(value, (list, tuple, set)):
        items = value
    else:
        items = [value]

    cleaned: List[str] = []
    for item in items:
        if isinstance(item, Mapping):
            item = item.get("name") or item.get("title") or item.get("description")
        if item is None:
            continue
        text = _BULLET.sub("", str(item)).strip()
        if text:
            cleaned.append(text)
    return cleaned


def _clean_scalar(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (list, tuple)):
        parts = _clean_list(value)
        return ", ".join(parts) if parts else None
    if isinstance(value, Mapping):
        return json.dumps(value, sort_keys=True) if value else None
    text = str(value).strip()
    return text or None


def normalize_fields(
    payload: Mapping[str, Any],
    aliases: Optional[Mapping[str, CanonicalField]] = None,
) -> Tuple[Dict[str, Any], Optional[float]]:
    """Map a raw payload onto canonical fields.

    Returns the canonical fields (empty values dropped) and the normalized
    confidence if the payload carried one. Provider-specific ``aliases``
    extend and override ``COMMON_FIELD_ALIASES``.
    """
    lookup: Dict[str, CanonicalField] = dict(COMMON_FIELD_ALIASES)
    if aliases:
        lookup.update({normalize_key(key): field for key, field in aliases.items()})

    flat: List[Tuple[str, Any]] = []
    for key, value in payload.items():
        normalized = normalize_key(str(key))
        if normalized in NESTED_CONTAINERS and isinstance(value, Mapping):
            flat.extend((normalize_key(str(inner)), item) for inner, item in value.items())
        else:
            flat.append((normalized, value))

    confidence: Optional[float] = None
    fields: Dict[str, Any] = {}
    for key, value in flat:
        if key in CONFIDENCE_KEYS:
            confidence = normalize_confidence(value)
            continue
        field = lookup.get(key)
        if field is None or field.value in fields:
            continue
        cleaned = _clean_list(value) if field.is_list else _clean_scalar(value)
        if cleaned:
            fields[field.value] = cleaned

    return fields, confidence
