"""Generation request pipeline: credentials, dispatch, retry policies, locators."""

from hibiscus.services.generation.client import GenerationClient
from hibiscus.services.generation.credentials import CredentialRotator
from hibiscus.services.generation.dispatcher import Dispatcher
from hibiscus.services.generation.outcomes import OutcomeKind, RequestOutcome
from hibiscus.services.generation.retry import RetryEngine, RetryState, SafetyRetryResult
from hibiscus.services.generation.url_builder import build_locator

__all__ = [
    "CredentialRotator",
    "Dispatcher",
    "GenerationClient",
    "OutcomeKind",
    "RequestOutcome",
    "RetryEngine",
    "RetryState",
    "SafetyRetryResult",
    "build_locator",
]
