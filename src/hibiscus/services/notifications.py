"""User notification sinks.

The pipeline only needs two things from a UI: a transient message (toast)
and a blocking error panel for auth/balance failures.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Protocol

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

ERROR_PANEL_COUNTDOWN_SECONDS = 10


class Notification(BaseModel):
    """One message shown to the user."""

    message: str
    level: str = "info"
    panel: bool = False
    kind: str | None = None
    countdown_seconds: int | None = None
    created_at: datetime


class Notifier(Protocol):
    def notify(self, message: str, level: str = "info") -> None: ...

    def show_error_panel(
        self, kind: str, message: str, countdown_seconds: int = ERROR_PANEL_COUNTDOWN_SECONDS
    ) -> None: ...


class LogNotifier:
    """Notifier that logs each message and keeps a bounded history for polling."""

    def __init__(self, history_size: int = 50):
        self.history: deque[Notification] = deque(maxlen=history_size)

    def notify(self, message: str, level: str = "info") -> None:
        self.history.append(
            Notification(message=message, level=level, created_at=datetime.now(timezone.utc))
        )
        logger.info("notification.toast", level=level, notification=message)

    def show_error_panel(
        self, kind: str, message: str, countdown_seconds: int = ERROR_PANEL_COUNTDOWN_SECONDS
    ) -> None:
        self.history.append(
            Notification(
                message=message,
                level="error",
                panel=True,
                kind=kind,
                countdown_seconds=countdown_seconds,
                created_at=datetime.now(timezone.utc),
            )
        )
        logger.warning("notification.panel", kind=kind, notification=message)

    def recent(self, limit: int = 20) -> list[Notification]:
        return list(self.history)[-limit:]
