"""
Exception types shared across frontlink stages.

Service errors carry a retryable/non-retryable classification so the stages
can decide whether to back off and try again or to skip the item.
"""

import openai


class ServiceError(Exception):
    """Raised when an external embedding or summarization service fails."""

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientServiceError(ServiceError):
    """Timeouts, connection problems and rate limiting. Safe to retry."""

    pass


class PermanentServiceError(ServiceError):
    """Invalid input, bad credentials or an exhausted quota. Retrying won't help."""

    pass


class HeaderParseError(Exception):
    """Raised when a document's front matter cannot be parsed."""

    pass


class StoreError(Exception):
    """Raised when a store transaction fails."""

    pass


class StoreOpenError(StoreError):
    """Raised when the store cannot be opened at all."""

    pass


def classify_http_status(
    status_code: int, message: str, provider: str = None, code: str = None
) -> ServiceError:
    """
    Maps an HTTP error response onto the retryable/non-retryable taxonomy.

    429 is retryable unless the account's quota is exhausted.
    """
    if code == "insufficient_quota":
        return PermanentServiceError(message, provider=provider, status_code=status_code)
    if status_code in (408, 409, 429) or status_code >= 500:
        return TransientServiceError(message, provider=provider, status_code=status_code)
    return PermanentServiceError(message, provider=provider, status_code=status_code)


def classify_openai_error(error: openai.OpenAIError, provider: str = "openai") -> ServiceError:
    """Converts an exception raised by the OpenAI SDK into a ServiceError."""
    if isinstance(error, openai.APIConnectionError):
        return TransientServiceError(f"Could not reach {provider}: {error}", provider=provider)
    if isinstance(error, openai.APIStatusError):
        return classify_http_status(
            error.status_code,
            f"{provider} API error {error.status_code}: {error.message}",
            provider=provider,
            code=getattr(error, "code", None),
        )
    return PermanentServiceError(f"{provider} error: {error}", provider=provider)
