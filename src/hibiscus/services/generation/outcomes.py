"""Request outcome taxonomy returned by the dispatcher."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OutcomeKind(str, Enum):
    """Classification of a single upstream response."""

    SUCCESS = "success"
    CONTENT_FILTERED = "content_filtered"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_SERVER = "transient_server"
    AUTH_FAILED = "auth_failed"
    BALANCE_EXHAUSTED = "balance_exhausted"
    FATAL_CLIENT_ERROR = "fatal_client_error"
    NETWORK_ERROR = "network_error"


RETRYABLE_TRANSIENT = (OutcomeKind.TRANSIENT_SERVER, OutcomeKind.RATE_LIMITED)


@dataclass(frozen=True)
class RequestOutcome:
    """Tagged result of one dispatch.

    ``content`` is only populated for SUCCESS; ``message`` holds the error body
    (or the exception text for NETWORK_ERROR). ``credential`` is the key that
    was attached, so rotation can mark exactly that key failed.
    """

    kind: OutcomeKind
    content: bytes = b""
    content_type: str = "application/octet-stream"
    message: str = ""
    status_code: Optional[int] = None
    credential: Optional[str] = None
    locator: str = ""

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS
