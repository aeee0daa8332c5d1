# src/askai/providers/classify.py
from __future__ import annotations

from askai.core.errors import ProviderClientError, ProviderError, ProviderTransientError


def classify_exception(exc: Exception) -> ProviderError:
    """
    Convert SDK/client exceptions into neutral provider errors.
    Avoid hard dependency on specific SDK exception classes by inspecting attributes/message;
    the OpenAI and Anthropic SDKs both expose `status_code` on HTTP errors.
    """
    if isinstance(exc, ProviderError):
        return exc
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    msg = str(exc)

    if status is not None:
        s = int(status)
        if s == 429 or s >= 500:
            return ProviderTransientError(msg)
        return ProviderClientError(msg)

    lower = msg.lower()
    if any(k in lower for k in ("rate limit", "overloaded", "temporarily unavailable", "timeout", "timed out", "connection")):
        return ProviderTransientError(msg)
    if any(k in lower for k in ("invalid_request_error", "unsupported", "parameter", "authentication")):
        return ProviderClientError(msg)
    return ProviderTransientError(msg)
