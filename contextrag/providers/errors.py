"""
ContextRAG - Provider Error Translation
=======================================

Maps exceptions from the anthropic/openai SDKs (which share exception class
names) and from httpx onto the shared error taxonomy.
"""

import logging
from types import ModuleType
from typing import Optional

import httpx

from contextrag.shared.exceptions import (
    ConfigurationError,
    ContentPolicyError,
    ContextRAGError,
    ExternalServiceError,
    QuotaExceededError,
    RateLimitError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)

QUOTA_MARKERS = ("insufficient_quota", "credit balance", "quota", "billing")
POLICY_MARKERS = ("content_policy", "content policy", "content_filter", "safety", "refus")


def parse_retry_after(headers) -> Optional[float]:
    """Read a Retry-After header (seconds form only)."""
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _message(error: Exception) -> str:
    return str(getattr(error, "message", None) or error)


def translate_sdk_error(error: Exception, sdk: ModuleType, provider: str) -> ContextRAGError:
    """
    Translate an SDK exception.

    Args:
        error: Exception raised by the SDK client
        sdk: The SDK module (anthropic or openai)
        provider: Provider name for messages
    """
    if isinstance(error, ContextRAGError):
        return error

    text = _message(error)
    lowered = text.lower()
    details = {"provider": provider}

    if isinstance(error, sdk.RateLimitError):
        if any(marker in lowered for marker in QUOTA_MARKERS):
            return QuotaExceededError(f"{provider} quota exceeded: {text}", details=details)
        response = getattr(error, "response", None)
        retry_after = parse_retry_after(getattr(response, "headers", None))
        return RateLimitError(f"{provider} rate limit: {text}", retry_after=retry_after, details=details)

    if isinstance(error, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
        return ConfigurationError(f"{provider} rejected credentials: {text}", details=details)

    if isinstance(error, sdk.APITimeoutError):
        return TransientServiceError(f"{provider} request timed out: {text}", details=details)

    if isinstance(error, sdk.APIConnectionError):
        return TransientServiceError(f"{provider} connection error: {text}", details=details)

    if isinstance(error, sdk.APIStatusError):
        status = getattr(error, "status_code", None)
        if any(marker in lowered for marker in QUOTA_MARKERS):
            return QuotaExceededError(f"{provider} quota exceeded: {text}", details=details)
        if any(marker in lowered for marker in POLICY_MARKERS):
            return ContentPolicyError(f"{provider} refused content: {text}", details=details)
        if status is not None and (status >= 500 or status in (408, 409, 529)):
            return TransientServiceError(
                f"{provider} server error {status}: {text}", status_code=status, details=details
            )
        return ExternalServiceError(
            f"{provider} request failed ({status}): {text}", code="PROVIDER_REQUEST_FAILED", details=details
        )

    return ExternalServiceError(f"{provider} error: {text}", details=details)


def translate_http_error(error: Exception, provider: str) -> ContextRAGError:
    """Translate an httpx exception from a plain HTTP provider."""
    details = {"provider": provider}

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        body = error.response.text[:200]
        if status == 429:
            return RateLimitError(
                f"{provider} rate limit: {body}",
                retry_after=parse_retry_after(error.response.headers),
                details=details,
            )
        if status in (401, 403):
            return ConfigurationError(f"{provider} rejected credentials", details=details)
        if status == 402:
            return QuotaExceededError(f"{provider} quota exceeded: {body}", details=details)
        if status >= 500:
            return TransientServiceError(
                f"{provider} server error {status}", status_code=status, details=details
            )
        return ExternalServiceError(f"{provider} request failed ({status}): {body}", details=details)

    if isinstance(error, httpx.TimeoutException):
        return TransientServiceError(f"{provider} request timed out", details=details)

    if isinstance(error, httpx.TransportError):
        return TransientServiceError(f"{provider} connection error: {error}", details=details)

    return ExternalServiceError(f"{provider} error: {error}", details=details)
