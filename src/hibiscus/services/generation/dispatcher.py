"""Single-request HTTP dispatch with outcome classification."""

from typing import Optional

import httpx
import structlog

from hibiscus.services.generation.classifier import classify_response
from hibiscus.services.generation.credentials import mask_credential
from hibiscus.services.generation.outcomes import OutcomeKind, RequestOutcome

logger = structlog.get_logger(__name__)

_DEFAULT_CONNECT_TIMEOUT = 10.0
_ERROR_PREVIEW_CHARS = 200


class Dispatcher:
    """Issues exactly one GET per call and classifies the response.

    Never retries: every retry decision belongs to the caller. Network-level
    failures come back as NETWORK_ERROR outcomes instead of raising.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize dispatcher.

        Args:
            client: Shared HTTP client (created when omitted)
            connect_timeout: Connection timeout in seconds. Reads are unbounded;
                generation time is limited by attempt budgets instead.
            transport: Custom transport for the created client (tests pass
                ``httpx.MockTransport``)
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=connect_timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def dispatch(self, locator: str, credential: Optional[str]) -> RequestOutcome:
        """Send one request and classify the result.

        Args:
            locator: Fully built request URL
            credential: API key to attach as a Bearer token, or None

        Returns:
            RequestOutcome tagged with the classification and the credential used
        """
        headers = {"Authorization": f"Bearer {credential}"} if credential else {}

        try:
            response = await self._client.get(locator, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                "dispatch.network_error",
                error_type=type(e).__name__,
                error_message=str(e),
                credential=mask_credential(credential),
            )
            return RequestOutcome(
                kind=OutcomeKind.NETWORK_ERROR,
                message=str(e) or type(e).__name__,
                credential=credential,
                locator=locator,
            )

        content_type = response.headers.get("content-type", "application/octet-stream")
        if response.is_success:
            return RequestOutcome(
                kind=OutcomeKind.SUCCESS,
                content=response.content,
                content_type=content_type,
                status_code=response.status_code,
                credential=credential,
                locator=locator,
            )

        body = response.text
        kind = classify_response(response.status_code, body)
        logger.warning(
            "dispatch.failed",
            status=response.status_code,
            outcome=kind.value,
            error_preview=body[:_ERROR_PREVIEW_CHARS],
            credential=mask_credential(credential),
        )
        return RequestOutcome(
            kind=kind,
            message=body,
            status_code=response.status_code,
            credential=credential,
            locator=locator,
            content_type=content_type,
        )
