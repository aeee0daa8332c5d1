class ProviderError(Exception):
    """Base class for provider-level failures."""

class ProviderUnavailable(ProviderError):
    """
    No credential/client was configured for the provider. Not retryable and
    surfaced immediately; the process keeps running.
    """

class ProviderClientError(ProviderError):
    """
    Non-retryable: caller/config issue (4xx invalid request, auth, unknown model,
    unsupported parameter, etc.). The fix is change input/config, not retry.
    """

class ProviderTransientError(ProviderError):
    """
    Rate limits, timeouts, network hiccups, 5xx, etc.
    Nothing here retries; callers decide.
    """

class ConfigurationError(ValueError):
    """Invalid or missing settings. Fatal at startup."""

class StreamClosedError(RuntimeError):
    """An event was emitted on a stream that already delivered Done or Error."""
