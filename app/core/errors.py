"""Custom exception hierarchy for the competitor-analysis backend."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from fastapi import status

from competitoragents.providers.models import PERMANENT_ERROR_KINDS, ErrorKind, ProviderResult


class CompetitorAgentsError(Exception):
    """Base class for application-specific exceptions."""

    default_message = "An unexpected error occurred."
    code = "competitoragents_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.code = (code or self.code).lower().replace(" ", "_")
        self.status_code = status_code or self.status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the exception to a JSON-ready dictionary."""
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CompetitorAgentsError):
    """Raised when user input fails validation rules."""

    default_message = "Request validation failed."
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class ResourceNotFoundError(CompetitorAgentsError):
    """Raised when a requested resource cannot be found."""

    default_message = "Requested resource was not found."
    code = "resource_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class SessionStateError(CompetitorAgentsError):
    """Raised when a session status change would move backwards."""

    default_message = "Invalid session state transition."
    code = "session_state_error"
    status_code = status.HTTP_409_CONFLICT


class GateDeniedError(CompetitorAgentsError):
    """Raised when admission control refuses to start an analysis."""

    default_message = "Analysis is not permitted right now."
    code = "gate_denied"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        reasons: Sequence[str],
        *,
        provider_status: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.reasons = list(reasons)
        super().__init__(
            "; ".join(self.reasons) or self.default_message,
            details={"reasons": self.reasons, "provider_status": dict(provider_status or {})},
        )


class ExternalServiceError(CompetitorAgentsError):
    """Raised when an upstream service fails."""

    default_message = "Upstream service is unavailable."
    code = "external_service_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ProviderTransientError(ExternalServiceError):
    """Provider failure that may succeed on retry (rate limit, timeout, network)."""

    default_message = "Provider is temporarily unavailable."
    code = "provider_transient_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ProviderPermanentError(ExternalServiceError):
    """Provider failure that retrying will not fix (credentials, malformed output)."""

    default_message = "Provider rejected the request."
    code = "provider_permanent_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class SessionTotalFailureError(ExternalServiceError):
    """Raised when no provider succeeded for any target of a session."""

    default_message = "Every provider failed for every target."
    code = "session_total_failure"
    status_code = status.HTTP_502_BAD_GATEWAY


class SessionCancelledError(CompetitorAgentsError):
    """Raised when a session ended because the caller cancelled it."""

    default_message = "Analysis session was cancelled."
    code = "session_cancelled"
    status_code = status.HTTP_409_CONFLICT


def error_for_result(result: ProviderResult) -> Optional[CompetitorAgentsError]:
    """Classify a failed provider result into the error taxonomy.

    Returns ``None`` for successful results.
    """
    if result.succeeded:
        return None
    details = {
        "provider": result.provider,
        "target": result.target,
        "kind": result.error_kind.value if result.error_kind else ErrorKind.UNKNOWN.value,
        "attempts": result.attempt,
    }
    if result.error_kind is not None and result.error_kind.is_transient:
        return ProviderTransientError(result.error, details=details)
    if result.error_kind in PERMANENT_ERROR_KINDS:
        return ProviderPermanentError(result.error, details=details)
    return ExternalServiceError(result.error, code="provider_error", details=details)


__all__ = [
    "CompetitorAgentsError",
    "ExternalServiceError",
    "GateDeniedError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "ResourceNotFoundError",
    "SessionCancelledError",
    "SessionStateError",
    "SessionTotalFailureError",
    "ValidationError",
    "error_for_result",
]
