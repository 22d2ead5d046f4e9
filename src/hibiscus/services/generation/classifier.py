"""Response and error classification for the generation API.

All string sniffing of upstream error bodies lives here so the fragile
matching is isolated and testable against real error bodies.

Classification rules for a raw response (classify_response):
    - 2xx → SUCCESS
    - 401 → AUTH_FAILED
    - 402 → BALANCE_EXHAUSTED
    - 403 with a balance marker → BALANCE_EXHAUSTED, else FATAL_CLIENT_ERROR
    - 429 → RATE_LIMITED
    - 5xx with a resolution-limit marker → FATAL_CLIENT_ERROR
    - 5xx → TRANSIENT_SERVER
    - 400 with a safety marker → CONTENT_FILTERED
    - any other status → FATAL_CLIENT_ERROR
"""

import json
import re
from dataclasses import dataclass
from typing import Optional

from hibiscus.services.exceptions import (
    AuthError,
    BalanceError,
    ClientRequestError,
    ContentFilteredError,
    ErrorKind,
    NetworkError,
    RateLimitError,
    ResolutionLimitError,
    ServerError,
    ServiceError,
    TransientError,
)
from hibiscus.services.generation.outcomes import OutcomeKind, RequestOutcome

# Matched case-sensitively, as the upstream spells it
BALANCE_MARKERS_EXACT = ("FORBIDDEN",)
# Matched against the lowercased body
BALANCE_MARKERS = ("balance", "insufficient", "pollen")
SAFETY_MARKERS = (
    "prohibited_content",
    "safety",
    "content rejected",
    "content policy",
    "sexual content",
    "nsfw",
)

_MAX_JSON_DEPTH = 5
_SERVER_MODEL_RE = re.compile(r"no active (\w+) servers", re.IGNORECASE)


def is_balance_error(body: str) -> bool:
    lower = body.lower()
    return any(m in body for m in BALANCE_MARKERS_EXACT) or any(
        m in lower for m in BALANCE_MARKERS
    )


def is_safety_error(body: str) -> bool:
    lower = body.lower()
    return any(m in lower for m in SAFETY_MARKERS)


def is_resolution_limit(body: str) -> bool:
    lower = body.lower()
    return (
        "exceeds limit" in lower
        or "resolution too high" in lower
        or ("value_error" in lower and "pixels" in lower)
    )


def classify_response(status_code: int, body: str) -> OutcomeKind:
    """Classify an HTTP status and error body into an outcome kind."""
    if 200 <= status_code < 300:
        return OutcomeKind.SUCCESS
    if status_code == 401:
        return OutcomeKind.AUTH_FAILED
    if status_code == 402:
        return OutcomeKind.BALANCE_EXHAUSTED
    if status_code == 403:
        if is_balance_error(body):
            return OutcomeKind.BALANCE_EXHAUSTED
        return OutcomeKind.FATAL_CLIENT_ERROR
    if status_code == 429:
        return OutcomeKind.RATE_LIMITED
    if status_code >= 500:
        if is_resolution_limit(body):
            return OutcomeKind.FATAL_CLIENT_ERROR
        return OutcomeKind.TRANSIENT_SERVER
    if status_code == 400 and is_safety_error(body):
        return OutcomeKind.CONTENT_FILTERED
    return OutcomeKind.FATAL_CLIENT_ERROR


def outcome_to_error(outcome: RequestOutcome) -> ServiceError:
    """Build the exception matching a non-success outcome."""
    status = outcome.status_code
    body = outcome.message
    kind = outcome.kind

    if kind is OutcomeKind.AUTH_FAILED:
        return AuthError(f"AUTH_ERROR: {body}", status_code=status)
    if kind is OutcomeKind.BALANCE_EXHAUSTED:
        prefix = "PAYMENT_REQUIRED" if status == 402 else "BALANCE_ERROR"
        return BalanceError(f"{prefix}: {body}", status_code=status)
    if kind is OutcomeKind.RATE_LIMITED:
        return RateLimitError("Rate limited - too many requests", status_code=status)
    if kind is OutcomeKind.TRANSIENT_SERVER:
        return ServerError(f"Server Error {status}: {body}", status_code=status)
    if kind is OutcomeKind.NETWORK_ERROR:
        return NetworkError(f"Network error: {body}")
    if kind is OutcomeKind.CONTENT_FILTERED:
        return ContentFilteredError(f"HTTP {status}: {body}", status_code=status)
    if kind is OutcomeKind.FATAL_CLIENT_ERROR:
        if is_resolution_limit(body):
            return ResolutionLimitError(f"HTTP {status}: {body}", status_code=status)
        return ClientRequestError(f"HTTP {status}: {body}", status_code=status)
    raise ValueError(f"Outcome {kind.value} is not an error")


@dataclass(frozen=True)
class ErrorInfo:
    """User-facing description of a failure."""

    kind: ErrorKind
    display: str
    raw: str
    model: Optional[str] = None


DISPLAY_MESSAGES = {
    ErrorKind.RESOLUTION_LIMIT: "Resolution too high for this model. Try reducing the size.",
    ErrorKind.SAFETY: "Content blocked by safety filter.",
    ErrorKind.AUTH: "Invalid or missing API key.",
    ErrorKind.BALANCE: "Insufficient balance. Please add credits.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please wait a moment.",
}


def _extract_message(raw: str) -> str:
    """Dig the innermost message out of nested JSON error bodies.

    The upstream wraps errors several levels deep, sometimes with the inner
    object serialized as a string inside ``message``.
    """
    # Bodies are often prefixed, e.g. "HTTP 500: {...}"
    start = raw.find("{")
    if start == -1:
        return raw
    try:
        obj = json.loads(raw[start:])
    except ValueError:
        return raw

    extracted = raw
    depth = 0
    while isinstance(obj, dict) and depth < _MAX_JSON_DEPTH:
        message = obj.get("message")
        error = obj.get("error")
        if message:
            if isinstance(message, str) and message.startswith("{"):
                try:
                    obj = json.loads(message)
                except ValueError:
                    return message
            else:
                return str(message)
        elif isinstance(error, str) and error:
            return error
        elif isinstance(error, dict):
            obj = error
        else:
            break
        depth += 1
    return extracted


def parse_api_error(raw: str) -> ErrorInfo:
    """Map an upstream error text to a kind and a human-readable message."""
    raw = raw or "Unknown error"
    extracted = _extract_message(raw)
    lower = extracted.lower()

    if is_resolution_limit(extracted):
        kind = ErrorKind.RESOLUTION_LIMIT
    elif "no active" in lower and "servers available" in lower:
        match = _SERVER_MODEL_RE.search(extracted)
        model = match.group(1) if match else ""
        return ErrorInfo(
            kind=ErrorKind.TRANSIENT_SERVER,
            display=f"Model {model} unavailable. Try another model.",
            raw=raw,
            model=model,
        )
    elif is_safety_error(extracted) or "filtered" in lower:
        kind = ErrorKind.SAFETY
    elif "unauthorized" in lower or "401" in lower or "invalid api key" in lower:
        kind = ErrorKind.AUTH
    elif "balance" in lower or "pollen" in lower or "402" in lower or "insufficient" in lower:
        kind = ErrorKind.BALANCE
    elif "rate limit" in lower or "too many requests" in lower or "429" in lower:
        kind = ErrorKind.RATE_LIMITED
    else:
        return ErrorInfo(kind=ErrorKind.GENERIC, display=extracted, raw=raw)

    return ErrorInfo(kind=kind, display=DISPLAY_MESSAGES[kind], raw=raw)


def describe_error(exc: BaseException) -> ErrorInfo:
    """Classify a failure for display.

    Transient errors only reach a caller once their retry budget is spent, so
    they surface as generic with the underlying message.
    """
    info = parse_api_error(str(exc))
    kind = getattr(exc, "kind", ErrorKind.GENERIC)

    if isinstance(exc, TransientError):
        return ErrorInfo(
            kind=ErrorKind.GENERIC, display=info.display, raw=info.raw, model=info.model
        )
    if kind is ErrorKind.EXHAUSTED_RETRIES:
        return ErrorInfo(kind=kind, display=str(exc), raw=info.raw)
    if kind in DISPLAY_MESSAGES:
        return ErrorInfo(kind=kind, display=DISPLAY_MESSAGES[kind], raw=info.raw)
    return info
