"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers can inspect it without parsing
    # str(exception). Never raise this directly - always a subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when a referenced local entity does not exist (RecordNotFound)."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(DomainException):
    """Input validation failed (bad limit, page or timeframe).

    Example:
        raise ValidationError("limit must be >= 1, got 0")
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
    """

    pass


# =============================================================================
# Credential / provider errors
# =============================================================================


class NotConnectedError(DomainException):
    """User has no (complete) streaming credential.

    Hey future me - partial credentials (e.g. refresh token but no expiry) count as
    NOT connected too! We never try to limp along with half a credential.
    """

    def __init__(self, user_id: Any) -> None:
        super().__init__(f"User {user_id} has not connected a streaming account")
        self.user_id = user_id


class ProviderAuthError(DomainException):
    """Token endpoint rejected the request (bad/expired code or revoked refresh token).

    Not retryable - the user has to go through the authorization flow again.
    """

    def __init__(
        self,
        message: str = "Authorization failed. Please reconnect your streaming account.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g. "invalid_grant"
        self.http_status = http_status


class AccessTokenError(DomainException):
    """Provider answered 401 - the access token is invalid or expired.

    Callers decide whether to refresh and retry. The client never does it on its own.
    """

    pass


class RateLimitExceededError(DomainException):
    """Provider kept answering 429 until the attempt budget was used up."""

    def __init__(self, attempts: int, retry_after: float | None = None) -> None:
        super().__init__(
            f"Rate limit exceeded after {attempts} attempts "
            f"(last Retry-After: {retry_after if retry_after is not None else 'n/a'}s)"
        )
        self.attempts = attempts
        self.retry_after = retry_after


class ProviderError(DomainException):
    """Unclassified non-2xx answer from the provider.

    `message` is the provider's own text, str() adds the status.
    """

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        return f"Status {self.status}: {self.message}"


RecordNotFound = EntityNotFoundException

__all__ = [
    "AccessTokenError",
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "NotConnectedError",
    "ProviderAuthError",
    "ProviderError",
    "RateLimitExceededError",
    "RecordNotFound",
    "ValidationError",
]
