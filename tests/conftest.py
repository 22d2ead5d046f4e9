"""pytest fixtures for hibiscus tests.

Provides:
- StubDispatcher: scripted dispatcher returning canned outcomes (no network)
- GatedDispatcher: StubDispatcher that holds requests until released
- RecordingSleep: sleep replacement that records requested delays
- settings: Settings isolated from the environment and .env file
- make_client: factory for a GenerationClient over a StubDispatcher
- gallery / notifier: in-process collaborators
"""

import asyncio
import random
from typing import Mapping, Optional, Sequence, Union

import pytest

from hibiscus.core.config import Settings
from hibiscus.services.gallery import InMemoryGallery
from hibiscus.services.generation.client import GenerationClient
from hibiscus.services.generation.credentials import CredentialRotator
from hibiscus.services.generation.outcomes import OutcomeKind, RequestOutcome
from hibiscus.services.generation.url_builder import DEFAULT_API_BASE
from hibiscus.services.notifications import LogNotifier

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"

ScriptItem = Union[OutcomeKind, RequestOutcome]

_DEFAULT_STATUS = {
    OutcomeKind.SUCCESS: 200,
    OutcomeKind.CONTENT_FILTERED: 400,
    OutcomeKind.RATE_LIMITED: 429,
    OutcomeKind.TRANSIENT_SERVER: 503,
    OutcomeKind.AUTH_FAILED: 401,
    OutcomeKind.BALANCE_EXHAUSTED: 402,
    OutcomeKind.FATAL_CLIENT_ERROR: 400,
    OutcomeKind.NETWORK_ERROR: None,
}

_DEFAULT_MESSAGE = {
    OutcomeKind.CONTENT_FILTERED: '{"error": "Content rejected by safety filter"}',
    OutcomeKind.RATE_LIMITED: "Too Many Requests",
    OutcomeKind.TRANSIENT_SERVER: "Service Unavailable",
    OutcomeKind.AUTH_FAILED: "Unauthorized",
    OutcomeKind.BALANCE_EXHAUSTED: "Insufficient pollen balance",
    OutcomeKind.FATAL_CLIENT_ERROR: "Invalid parameter: model",
    OutcomeKind.NETWORK_ERROR: "Connection refused",
}


class StubDispatcher:
    """Dispatcher double driven by a script of outcomes.

    Script items are consumed in order and the last one repeats forever.
    ``by_credential`` pins a fixed outcome to a credential and takes
    precedence over the script.
    """

    def __init__(
        self,
        *script: ScriptItem,
        by_credential: Optional[Mapping[str, ScriptItem]] = None,
    ):
        self.script = list(script) or [OutcomeKind.SUCCESS]
        self.by_credential = dict(by_credential or {})
        self.calls: list[tuple[str, Optional[str]]] = []
        self.closed = False

    async def dispatch(self, locator: str, credential: Optional[str]) -> RequestOutcome:
        self.calls.append((locator, credential))
        await asyncio.sleep(0)

        if credential in self.by_credential:
            item = self.by_credential[credential]
        elif len(self.script) > 1:
            item = self.script.pop(0)
        else:
            item = self.script[0]
        return self._resolve(item, locator, credential)

    @staticmethod
    def _resolve(item: ScriptItem, locator: str, credential: Optional[str]) -> RequestOutcome:
        if isinstance(item, RequestOutcome):
            return item
        if item is OutcomeKind.SUCCESS:
            return RequestOutcome(
                kind=item,
                content=PNG_BYTES,
                content_type="image/png",
                status_code=200,
                credential=credential,
                locator=locator,
            )
        return RequestOutcome(
            kind=item,
            message=_DEFAULT_MESSAGE[item],
            status_code=_DEFAULT_STATUS[item],
            credential=credential,
            locator=locator,
        )

    @property
    def credentials_used(self) -> list[Optional[str]]:
        return [credential for _, credential in self.calls]

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    """Async sleep replacement: records delays and yields once to the loop."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings independent of the developer's environment."""
    return Settings(
        _env_file=None,
        app_env="test",
        api_key="key-alpha",
        completed_job_ttl_seconds=60,
        download_dir=str(tmp_path / "downloads"),
    )


@pytest.fixture
def gallery() -> InMemoryGallery:
    return InMemoryGallery()


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def make_client(sleep):
    """Build a GenerationClient over a stub dispatcher."""

    def _make(
        dispatcher: StubDispatcher,
        credentials: Union[str, Sequence[str]] = "key-alpha",
        **kwargs,
    ) -> GenerationClient:
        raw = credentials if isinstance(credentials, str) else ",".join(credentials)
        kwargs.setdefault("sleep", sleep)
        kwargs.setdefault("rng", random.Random(1234))
        return GenerationClient(CredentialRotator(raw), dispatcher, DEFAULT_API_BASE, **kwargs)

    return _make


class GatedDispatcher(StubDispatcher):
    """Holds every request until ``gate`` is set, then answers from the script."""

    def __init__(self, *script: ScriptItem):
        super().__init__(*script)
        self.gate = asyncio.Event()

    async def dispatch(self, locator: str, credential: Optional[str]) -> RequestOutcome:
        self.calls.append((locator, credential))
        await self.gate.wait()
        return self._resolve(self.script[0], locator, credential)
