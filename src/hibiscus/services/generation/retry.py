"""Retry policies layered on the dispatcher.

Three policies share one credential rotator:

- fetch_with_retry: bounded backoff retry for plain API calls (model lists).
  Small budget; auth and client errors abort immediately.
- fetch_with_safety_retry: persistent retry for image generation. Safety
  filter rejections are not billed upstream, so the budget is much larger.
  Transient and network failures spend the same budget. The loop is
  cancellable through a RetryState and returns None when cancelled.
- dispatch_rotating: balance/forbidden outcomes rotate to the next credential
  and retry the same attempt without spending budget. Bounded per call: once
  every distinct credential produced a balance outcome, it propagates.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

import structlog

from hibiscus.services.exceptions import SafetyRetriesExhaustedError, ServiceError
from hibiscus.services.generation.classifier import outcome_to_error
from hibiscus.services.generation.credentials import CredentialRotator, mask_credential
from hibiscus.services.generation.outcomes import (
    RETRYABLE_TRANSIENT,
    OutcomeKind,
    RequestOutcome,
)
from hibiscus.services.generation.url_builder import with_retry_marker

logger = structlog.get_logger(__name__)

MAX_RETRIES = 3
RETRY_DELAYS = (1.0, 2.0, 4.0)
MAX_SAFETY_RETRIES = 50
SAFETY_RETRY_DELAY = 0.5
NETWORK_RETRY_DELAY = 1.0

SleepFunc = Callable[[float], Awaitable[None]]
ProgressCallback = Callable[[int, int], None]
TransientCallback = Callable[[int, int], None]


class SupportsDispatch(Protocol):
    async def dispatch(self, locator: str, credential: Optional[str]) -> RequestOutcome: ...


def backoff_delay(
    attempt: int, kind: OutcomeKind, delays: tuple[float, ...] = RETRY_DELAYS
) -> float:
    """Delay before retrying a transient failure.

    The schedule clamps to its last entry; rate limits wait twice as long.
    """
    delay = delays[min(max(attempt, 1) - 1, len(delays) - 1)]
    if kind is OutcomeKind.RATE_LIMITED:
        delay *= 2
    return delay


@dataclass
class RetryState:
    """Progress and cancellation of one safety-retry loop.

    One state per call, grouped by context (e.g. "image", "edit").
    """

    active: bool = False
    cancelled: bool = False
    failures: int = 0
    current_attempt: int = 0

    def reset(self) -> None:
        self.active = True
        self.cancelled = False
        self.failures = 0
        self.current_attempt = 0

    def cancel(self) -> None:
        self.cancelled = True
        self.active = False


class RetryContexts:
    """Registry of named retry contexts, owned by the generation client.

    Every call gets its own RetryState, so overlapping calls on one context
    keep separate counters. Cancelling a context reaches all of its live loops.
    """

    def __init__(self, *names: str):
        self._latest: dict[str, RetryState] = {name: RetryState() for name in names}
        self._live: dict[str, list[RetryState]] = {name: [] for name in names}

    def get(self, name: str) -> RetryState:
        """State of the most recently started loop on a context."""
        return self._latest.setdefault(name, RetryState())

    def start(self, name: str) -> RetryState:
        state = RetryState()
        state.reset()
        self._latest[name] = state
        self._live.setdefault(name, []).append(state)
        return state

    def finish(self, name: str, state: RetryState) -> None:
        self._live[name] = [live for live in self._live.get(name, []) if live is not state]

    def cancel(self, name: str) -> bool:
        """Cancel every running loop of a context. Returns False if none is running."""
        running = [state for state in self._live.get(name, []) if state.active]
        if not running:
            return False
        for state in running:
            state.cancel()
        logger.info("retry.safety.cancel_requested", context=name, loops=len(running))
        return True


@dataclass(frozen=True)
class SafetyRetryResult:
    """Delivered asset plus how many attempts it took."""

    content: bytes
    attempts: int
    content_type: str = "application/octet-stream"
    locator: str = ""


class RetryEngine:
    """Applies the retry policies to a dispatcher and credential rotator."""

    def __init__(
        self,
        dispatcher: SupportsDispatch,
        rotator: CredentialRotator,
        *,
        max_retries: int = MAX_RETRIES,
        max_safety_retries: int = MAX_SAFETY_RETRIES,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.rotator = rotator
        self.max_retries = max_retries
        self.max_safety_retries = max_safety_retries
        self.retry_delays = retry_delays
        self._sleep = sleep

    async def dispatch_rotating(self, locator: str) -> RequestOutcome:
        """Dispatch once, rotating credentials on balance outcomes.

        Rotations are not attempts: the caller sees a single outcome. When
        rotation cannot help (single credential, or every distinct credential
        already failed in this call) the balance outcome is returned.
        """
        exhausted: set[str] = set()
        while True:
            credential = self.rotator.current()
            outcome = await self.dispatcher.dispatch(locator, credential)
            if outcome.kind is not OutcomeKind.BALANCE_EXHAUSTED:
                return outcome
            if not self._rotate(credential, exhausted):
                return outcome

    def _rotate(self, credential: Optional[str], exhausted: set[str]) -> bool:
        if credential is None or not self.rotator.has_alternatives():
            return False
        exhausted.add(credential)
        self.rotator.mark_failed(credential)
        if len(exhausted) >= self.rotator.distinct_count:
            logger.error("credential.all_exhausted", total=len(self.rotator))
            return False
        logger.warning("credential.retrying_rotated", failed=mask_credential(credential))
        return True

    async def fetch_with_retry(
        self,
        locator: str,
        on_transient: Optional[TransientCallback] = None,
    ) -> RequestOutcome:
        """Bounded transient retry for plain API calls.

        Args:
            locator: Request URL
            on_transient: Called with (attempt, max_retries) before each backoff

        Returns:
            The successful outcome

        Raises:
            AuthError, BalanceError, ClientRequestError: Immediately
            ServerError, RateLimitError, NetworkError: After the budget is spent
        """
        last_error: Optional[ServiceError] = None

        for attempt in range(1, self.max_retries + 1):
            logger.debug("retry.request", attempt=attempt, max_retries=self.max_retries)
            outcome = await self.dispatch_rotating(locator)

            if outcome.is_success:
                logger.debug("retry.request.succeeded", attempt=attempt)
                return outcome

            error = outcome_to_error(outcome)
            if outcome.kind not in (*RETRYABLE_TRANSIENT, OutcomeKind.NETWORK_ERROR):
                logger.error(
                    "retry.request.aborted", outcome=outcome.kind.value, error_message=str(error)
                )
                raise error

            last_error = error
            logger.warning(
                "retry.request.transient",
                attempt=attempt,
                outcome=outcome.kind.value,
                error_message=str(error),
            )
            if attempt < self.max_retries:
                if on_transient:
                    on_transient(attempt, self.max_retries)
                await self._sleep(backoff_delay(attempt, outcome.kind, self.retry_delays))

        logger.error("retry.request.exhausted", max_retries=self.max_retries)
        raise last_error or ServiceError("Request failed after all retries")

    async def fetch_with_safety_retry(
        self,
        locator: str,
        state: RetryState,
        on_progress: Optional[ProgressCallback] = None,
        on_transient: Optional[TransientCallback] = None,
    ) -> Optional[SafetyRetryResult]:
        """Persistent retry through safety-filter rejections.

        Args:
            locator: Request URL
            state: Retry state for this context; its cancelled flag is checked
                before every attempt and after every dispatch
            on_progress: Called with (failures, attempt) after each rejection
            on_transient: Called with (attempt, max_safety_retries) before
                each transient backoff

        Returns:
            SafetyRetryResult on success, None when cancelled

        Raises:
            AuthError, BalanceError, ClientRequestError: Immediately
            SafetyRetriesExhaustedError: Budget spent without success
        """
        state.active = True
        current_locator = locator
        logger.info("retry.safety.started", max_retries=self.max_safety_retries)

        try:
            for attempt in range(1, self.max_safety_retries + 1):
                if state.cancelled:
                    logger.info("retry.safety.cancelled", attempt=attempt)
                    return None

                state.current_attempt = attempt
                outcome = await self.dispatch_rotating(current_locator)

                # The in-flight result is discarded once cancel was requested
                if state.cancelled:
                    logger.info("retry.safety.cancelled", attempt=attempt, in_flight=True)
                    return None

                if outcome.is_success:
                    logger.info("retry.safety.succeeded", attempt=attempt)
                    return SafetyRetryResult(
                        content=outcome.content,
                        attempts=attempt,
                        content_type=outcome.content_type,
                        locator=current_locator,
                    )

                if outcome.kind is OutcomeKind.CONTENT_FILTERED:
                    state.failures += 1
                    logger.warning(
                        "retry.safety.filtered",
                        failures=state.failures,
                        attempt=attempt,
                        max_retries=self.max_safety_retries,
                    )
                    if on_progress:
                        on_progress(state.failures, attempt)
                    current_locator = with_retry_marker(
                        locator, f"{int(time.time() * 1000)}{attempt}"
                    )
                    await self._sleep(SAFETY_RETRY_DELAY)
                    continue

                if outcome.kind in RETRYABLE_TRANSIENT:
                    delay = backoff_delay(attempt, outcome.kind, self.retry_delays)
                    logger.warning(
                        "retry.safety.transient",
                        status=outcome.status_code,
                        attempt=attempt,
                        delay_seconds=delay,
                    )
                    if on_transient:
                        on_transient(attempt, self.max_safety_retries)
                    await self._sleep(delay)
                    continue

                if outcome.kind is OutcomeKind.NETWORK_ERROR:
                    logger.warning(
                        "retry.safety.network_error", attempt=attempt, error_message=outcome.message
                    )
                    await self._sleep(NETWORK_RETRY_DELAY)
                    continue

                error = outcome_to_error(outcome)
                logger.error(
                    "retry.safety.aborted", outcome=outcome.kind.value, error_message=str(error)
                )
                raise error
        finally:
            state.active = False

        logger.error("retry.safety.exhausted", max_retries=self.max_safety_retries)
        raise SafetyRetriesExhaustedError(self.max_safety_retries)
