"""Error taxonomy for outbound exchange calls and persistence.

Every failure that reaches the Procedure Layer is one of these kinds, and
each carries a message that can be shown to the end user as-is.
"""

from typing import Optional


class NullrouteError(Exception):
    """Base class for all application errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return False


class ConfigurationError(NullrouteError):
    """Required configuration (e.g. the exchange API key) is missing."""


class ValidationError(NullrouteError):
    """Malformed input, rejected before any network call."""


class ClientError(NullrouteError):
    """The exchange API rejected the request (4xx). Never retried."""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message)


class TransientError(NullrouteError):
    """Server error (5xx) or network failure. Retried by the backoff policy."""

    def __init__(self, message: str, status_code: Optional[int] = None, attempts: int = 1):
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return True


class ExchangeTimeoutError(NullrouteError):
    """The request exceeded its time bound.

    The outcome is ambiguous (the exchange may have created the transaction),
    so this is never retried automatically.
    """


class IntegrityError(NullrouteError):
    """A successful HTTP response failed semantic validation.

    Raised for payout address mismatches, missing transaction ids or
    malformed deposit addresses. Operators should treat it as a potential
    security incident.
    """


class PersistenceError(NullrouteError):
    """A Routing Map or Transaction Record Store operation failed."""
