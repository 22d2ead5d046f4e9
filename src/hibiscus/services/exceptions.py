"""Service error hierarchy for the generation pipeline.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, server errors)
- PermanentError: Non-retryable errors (authentication, balance, validation)

Every error carries an ErrorKind from the closed set surfaced to callers.
Cancellation is deliberately absent from the hierarchy: a cancelled
generation returns None instead of raising.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """User-facing error classification."""

    AUTH = "auth"
    BALANCE = "balance"
    SAFETY = "safety"
    RATE_LIMITED = "rate-limited"
    TRANSIENT_SERVER = "transient-server"
    NETWORK = "network"
    RESOLUTION_LIMIT = "resolution-limit"
    CANCELLED = "cancelled"
    EXHAUSTED_RETRIES = "exhausted-retries"
    GENERIC = "generic"


class ServiceError(Exception):
    """Base exception for all service errors."""

    kind: ErrorKind = ErrorKind.GENERIC

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts and connection failures
    - Rate limit exceeded (429)
    - Server errors (500, 502, 503)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401)
    - Balance exhausted (402, 403 with balance markers)
    - Invalid request parameters (400)
    """

    pass


class NetworkError(TransientError):
    """Connection refused, DNS failure or aborted request."""

    kind = ErrorKind.NETWORK


class RateLimitError(TransientError):
    """Rate limit exceeded (429)."""

    kind = ErrorKind.RATE_LIMITED


class ServerError(TransientError):
    """Upstream server error (5xx)."""

    kind = ErrorKind.TRANSIENT_SERVER


class ContentFilteredError(TransientError):
    """Upstream safety filter rejected the prompt or output (not billed)."""

    kind = ErrorKind.SAFETY


class AuthError(PermanentError):
    """Authentication failure (401): API key missing or invalid."""

    kind = ErrorKind.AUTH


class BalanceError(PermanentError):
    """Payment required (402) or balance/forbidden (403) after credential exhaustion."""

    kind = ErrorKind.BALANCE


class ClientRequestError(PermanentError):
    """Any other 4xx rejected by the upstream API."""

    pass


class ResolutionLimitError(ClientRequestError):
    """Requested dimensions exceed what the model accepts."""

    kind = ErrorKind.RESOLUTION_LIMIT


class GenerationTimeoutError(PermanentError):
    """Video generation exceeded its wall-clock timeout."""

    pass


class SafetyRetriesExhaustedError(PermanentError):
    """Safety filter kept rejecting the request for the whole attempt budget."""

    kind = ErrorKind.EXHAUSTED_RETRIES

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Blocked by the safety filter after {attempts} attempts")
