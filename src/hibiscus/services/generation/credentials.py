"""API key rotation across a comma-separated credential list."""

from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


def mask_credential(credential: Optional[str]) -> Optional[str]:
    """Render a credential safe for logs (last 4 characters only)."""
    if not credential:
        return None
    return f"...{credential[-4:]}"


class CredentialRotator:
    """Hands out the current valid API key and rotates past failed ones.

    The rotator is shared by every concurrent job. Its methods contain no
    await points, so under asyncio each call is atomic; callers running it
    from OS threads must wrap it in a lock.
    """

    def __init__(self, raw: str = ""):
        self._credentials: list[str] = []
        self._index = 0
        self._failed: set[str] = set()
        self.configure(raw)

    def configure(self, raw: Optional[str]) -> None:
        """Replace the credential list from a comma-separated string.

        Blank input leaves the list empty, meaning unauthenticated requests.
        """
        self._credentials = [c.strip() for c in (raw or "").split(",") if c.strip()]
        self._index = 0
        self._failed.clear()
        logger.debug("credential.configured", count=len(self._credentials))

    @property
    def credentials(self) -> list[str]:
        return list(self._credentials)

    @property
    def distinct_count(self) -> int:
        return len(set(self._credentials))

    def __len__(self) -> int:
        return len(self._credentials)

    def has_alternatives(self) -> bool:
        """Rotation only helps when more than one credential is configured."""
        return len(self._credentials) > 1

    def current(self) -> Optional[str]:
        """Return the first non-failed credential at or after the current index.

        When every credential has failed, the failed set is cleared and the
        index reset to 0 so all of them get another chance.
        """
        if not self._credentials:
            return None

        if self._failed >= set(self._credentials):
            self._failed.clear()
            self._index = 0
            logger.info("credential.reset", count=len(self._credentials))

        for _ in range(len(self._credentials)):
            credential = self._credentials[self._index]
            if credential not in self._failed:
                return credential
            self._index = (self._index + 1) % len(self._credentials)

        return self._credentials[0]

    def mark_failed(self, credential: Optional[str]) -> None:
        """Mark a credential failed and advance the index.

        No-op with fewer than two credentials.
        """
        if not credential or not self.has_alternatives():
            return
        self._failed.add(credential)
        self._index = (self._index + 1) % len(self._credentials)
        logger.warning(
            "credential.rotated",
            failed=mask_credential(credential),
            failed_count=len(self._failed),
            total=len(self._credentials),
        )
