"""Generation API client: images, edits, videos, model discovery and balance."""

import asyncio
import json
import random
from typing import Any, Mapping, Optional

import structlog

from hibiscus.core.config import Settings
from hibiscus.services.exceptions import (
    ClientRequestError,
    GenerationTimeoutError,
    ServiceError,
)
from hibiscus.services.generation.classifier import outcome_to_error
from hibiscus.services.generation.credentials import CredentialRotator
from hibiscus.services.generation.dispatcher import Dispatcher
from hibiscus.services.generation.outcomes import RequestOutcome
from hibiscus.services.generation.retry import (
    ProgressCallback,
    RetryContexts,
    RetryEngine,
    SafetyRetryResult,
    SleepFunc,
    TransientCallback,
)
from hibiscus.services.generation.url_builder import IMAGE_PARAM, build_locator

logger = structlog.get_logger(__name__)

IMAGE_CONTEXT = "image"
EDIT_CONTEXT = "edit"

FALLBACK_IMAGE_MODELS: list[dict[str, str]] = [
    {"name": "zimage", "description": "Z-Image (Default)"},
    {"name": "flux", "description": "Flux - High quality model"},
    {"name": "turbo", "description": "Turbo - Fast generation"},
    {"name": "gptimage", "description": "GPT Image"},
    {"name": "gptimage-large", "description": "GPT Image Large"},
    {"name": "kontext", "description": "Kontext - Good for editing"},
    {"name": "seedream", "description": "Seedream"},
    {"name": "seedream-pro", "description": "Seedream Pro"},
]


class GenerationClient:
    """Async client for the generation API.

    Usage::

        async with GenerationClient.from_settings(Settings()) as client:
            result = await client.generate_image("a red fox", {"width": 1024})
            if result is not None:
                Path("fox.png").write_bytes(result.content)
    """

    def __init__(
        self,
        rotator: CredentialRotator,
        dispatcher: Dispatcher,
        base_url: str,
        *,
        max_retries: int = 3,
        max_safety_retries: int = 50,
        video_timeout: float = 300.0,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.rotator = rotator
        self.dispatcher = dispatcher
        self.base_url = base_url.rstrip("/")
        self.video_timeout = video_timeout
        self.rng = rng
        self.contexts = RetryContexts(IMAGE_CONTEXT, EDIT_CONTEXT)
        self.engine = RetryEngine(
            dispatcher,
            rotator,
            max_retries=max_retries,
            max_safety_retries=max_safety_retries,
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "GenerationClient":
        dispatcher = kwargs.pop("dispatcher", None) or Dispatcher(
            connect_timeout=settings.connect_timeout_seconds
        )
        return cls(
            CredentialRotator(settings.api_key),
            dispatcher,
            settings.api_base_url,
            max_retries=settings.max_retries,
            max_safety_retries=settings.max_safety_retries,
            video_timeout=settings.video_timeout_seconds,
            **kwargs,
        )

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.dispatcher.close()

    def configure_credentials(self, raw: str) -> int:
        """Replace the API keys at runtime. Returns how many were parsed."""
        self.rotator.configure(raw)
        logger.info("client.credentials_updated", count=len(self.rotator))
        return len(self.rotator)

    def build_locator(self, prompt: str, params: Mapping[str, Any]) -> str:
        return build_locator(prompt, params, self.base_url, rng=self.rng)

    async def dispatch(self, locator: str) -> RequestOutcome:
        """One dispatch with balance rotation, no other retries."""
        return await self.engine.dispatch_rotating(locator)

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def generate_image(
        self,
        prompt: str,
        params: Mapping[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        on_transient: Optional[TransientCallback] = None,
        context: str = IMAGE_CONTEXT,
    ) -> Optional[SafetyRetryResult]:
        """Generate an image, retrying through safety-filter rejections.

        Returns:
            SafetyRetryResult, or None if the context was cancelled

        Raises:
            AuthError, BalanceError: Credential problems (not retried)
            ClientRequestError: Invalid request, including resolution limits
            SafetyRetriesExhaustedError: Filter never let the prompt through
        """
        locator = self.build_locator(prompt, params)
        state = self.contexts.start(context)
        logger.info(
            "client.image.started",
            context=context,
            model=params.get("model"),
            prompt=prompt[:100],
        )

        try:
            result = await self.engine.fetch_with_safety_retry(
                locator, state, on_progress=on_progress, on_transient=on_transient
            )
        finally:
            self.contexts.finish(context, state)

        if result is None:
            logger.info("client.image.cancelled", context=context)
        elif result.attempts > 1:
            logger.info("client.image.succeeded_after_retries", attempts=result.attempts)
        else:
            logger.info("client.image.succeeded", context=context)
        return result

    async def edit_image(
        self,
        prompt: str,
        params: Mapping[str, Any],
        on_progress: Optional[ProgressCallback] = None,
        on_transient: Optional[TransientCallback] = None,
    ) -> Optional[SafetyRetryResult]:
        """Image-to-image edit. ``params["image"]`` holds the reference URL(s)."""
        if not params.get(IMAGE_PARAM):
            raise ClientRequestError("Image edit requires at least one reference image")
        return await self.generate_image(
            prompt, params, on_progress=on_progress, on_transient=on_transient, context=EDIT_CONTEXT
        )

    def cancel(self, context: str = IMAGE_CONTEXT) -> bool:
        """Cancel a running safety-retry loop; it returns None at its next check."""
        return self.contexts.cancel(context)

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def generate_video(self, prompt: str, params: Mapping[str, Any]) -> RequestOutcome:
        """Generate a video in one request bounded by the wall-clock timeout.

        Raises:
            GenerationTimeoutError: The request outlived ``video_timeout``
            ServiceError: Any non-success outcome
        """
        locator = self.build_locator(prompt, params)
        logger.info(
            "client.video.started",
            model=params.get("model"),
            has_image=bool(params.get(IMAGE_PARAM)),
            timeout_seconds=self.video_timeout,
        )
        try:
            outcome = await asyncio.wait_for(self.dispatch(locator), timeout=self.video_timeout)
        except asyncio.TimeoutError as e:
            logger.warning("client.video.timeout", timeout_seconds=self.video_timeout)
            raise GenerationTimeoutError(
                "Video generation timed out. Try a shorter duration or simpler prompt."
            ) from e

        if not outcome.is_success:
            raise outcome_to_error(outcome)
        logger.info("client.video.succeeded", model=params.get("model"))
        return outcome

    # ------------------------------------------------------------------
    # Model discovery and account
    # ------------------------------------------------------------------

    async def _get_json(self, path: str) -> Any:
        outcome = await self.engine.fetch_with_retry(f"{self.base_url}{path}")
        try:
            return json.loads(outcome.content)
        except ValueError as e:
            raise ClientRequestError(f"Invalid JSON from {path}: {e}") from e

    async def list_image_models(self) -> list[Any]:
        return await self._get_json("/image/models")

    async def list_text_models(self) -> list[Any]:
        return await self._get_json("/text/models")

    async def load_image_models(self) -> list[Any]:
        """Image models from the API, or the built-in list if that fails."""
        try:
            models = await self.list_image_models()
            logger.info("client.models.loaded", count=len(models))
            return models
        except ServiceError as e:
            logger.warning("client.models.fallback", error=str(e), error_type=type(e).__name__)
            return list(FALLBACK_IMAGE_MODELS)

    async def fetch_balance(self) -> Optional[float]:
        """Account balance for the current key, or None when unknown."""
        credential = self.rotator.current()
        if not credential:
            return None
        outcome = await self.dispatcher.dispatch(f"{self.base_url}/account/balance", credential)
        if not outcome.is_success:
            logger.warning("client.balance.failed", outcome=outcome.kind.value)
            return None
        try:
            return float(json.loads(outcome.content)["balance"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("client.balance.invalid", error=str(e))
            return None
