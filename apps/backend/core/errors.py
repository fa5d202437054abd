"""
Error taxonomy for the extraction pipeline.

Chunk-level errors (RateLimited, ContextTooLarge, RetriesExhausted, ...) are
contained by the orchestrator. Only NoProviderAvailable is fatal, and only at
construction time.
"""
from typing import Any, Dict, List, Optional


class ExtractionError(Exception):
    """Base exception for extraction pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NoContentFound(ExtractionError):
    """The document had no usable content. Terminal empty result, not a failure."""


class QuotaExhausted(ExtractionError):
    """Daily call ceiling reached for a provider."""

    def __init__(self, provider_id: str, used: int, ceiling: int):
        super().__init__(
            f"Daily quota exhausted for provider '{provider_id}' ({used}/{ceiling})",
            {"provider_id": provider_id, "used": used, "ceiling": ceiling},
        )
        self.provider_id = provider_id
        self.used = used
        self.ceiling = ceiling


class ProviderError(ExtractionError):
    """Raw failure reported by a provider call, before classification."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        body: Optional[str] = None,
    ):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, details)
        self.status_code = status_code
        self.retry_after = retry_after
        self.body = body or ""


class RetryableProviderError(ExtractionError):
    """Classified failure that the invoker retries with backoff."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, {"retry_after": retry_after} if retry_after is not None else None)
        self.retry_after = retry_after


class RateLimited(RetryableProviderError):
    """Provider rate-limit or quota signal (429, RESOURCE_EXHAUSTED, ...)."""


class TransientProviderError(RetryableProviderError):
    """5xx, timeout or network failure."""


class ContextTooLarge(ExtractionError):
    """Request exceeded the provider context window. Never retried by the invoker."""


class FatalProviderError(ExtractionError):
    """Non-retryable provider failure."""


class ProviderUnavailable(ExtractionError):
    """Provider has no credentials or failed its availability check."""


class NoProviderAvailable(ExtractionError):
    """No configured provider is available."""


class RetriesExhausted(ExtractionError):
    """All retry attempts for one chunk failed."""

    def __init__(self, provider_id: str, attempts: List[Any], last_error: Optional[BaseException] = None):
        super().__init__(
            f"Provider '{provider_id}' failed after {len(attempts)} attempts: {last_error}",
            {"provider_id": provider_id, "attempts": len(attempts)},
        )
        self.provider_id = provider_id
        self.attempts = attempts
        self.last_error = last_error


class MalformedResponse(ExtractionError):
    """Provider output could not be parsed. Handled inside the recovery parser."""
