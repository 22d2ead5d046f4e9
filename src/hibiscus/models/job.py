"""GenerationJob entity - one user-initiated generation with lifecycle tracking."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    """What a job generates. Values match the recent-items buckets."""

    TXT2IMG = "txt2img"
    IMG2IMG = "img2img"
    VIDEO = "video"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class JobResult(BaseModel):
    """Delivered asset bytes plus the locator they were fetched from."""

    content: bytes
    locator: str
    content_type: str = "application/octet-stream"
    gallery_id: Optional[str] = None


class GenerationJob(BaseModel):
    """GenerationJob tracks one prompt through the retry pipeline."""

    id: int
    kind: JobKind = JobKind.TXT2IMG
    prompt: str
    params: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    safety_attempts: int = Field(default=0, ge=0)
    max_retries: int = Field(default=30, ge=0)
    cancelled: bool = False
    auto_download: bool = False
    result: Optional[JobResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.RUNNING, JobStatus.RETRY)

    def mark_running(self) -> None:
        """Transition from pending or retry to running.

        Raises:
            InvalidStateTransition: If current status is not pending or retry
        """
        if self.status not in (JobStatus.PENDING, JobStatus.RETRY):
            raise InvalidStateTransition(
                f"Cannot mark running from {self.status.value}. "
                "Job must be in pending or retry state."
            )
        self.status = JobStatus.RUNNING

    def mark_retry(self) -> None:
        """Record one content-filter retry and transition from running to retry.

        Raises:
            InvalidStateTransition: If current status is not running, or the
                job's attempt budget is already spent
        """
        if self.status != JobStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot mark retry from {self.status.value}. Job must be in running state."
            )
        if self.safety_attempts >= self.max_retries:
            raise InvalidStateTransition(
                f"Cannot retry job {self.id}: {self.safety_attempts}/{self.max_retries} "
                "safety attempts already used."
            )
        self.safety_attempts += 1
        self.status = JobStatus.RETRY

    def mark_completed(self, result: JobResult) -> None:
        """Transition from running to completed.

        Raises:
            InvalidStateTransition: If current status is not running (a
                cancelled job never completes)
        """
        if self.status != JobStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be in running state."
            )
        self.result = result
        self.status = JobStatus.COMPLETED
        self.finished_at = datetime.now(timezone.utc)

    def mark_failed(self, error: str, error_kind: str = "generic") -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error = error
        self.error_kind = error_kind
        self.status = JobStatus.FAILED
        self.finished_at = datetime.now(timezone.utc)

    def mark_cancelled(self) -> None:
        """Transition from any non-terminal state to cancelled.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark cancelled from terminal state {self.status.value}."
            )
        self.cancelled = True
        self.status = JobStatus.CANCELLED
        self.finished_at = datetime.now(timezone.utc)


class RecentItem(BaseModel):
    """Entry in the per-kind recent results buffer."""

    job_id: int
    kind: JobKind
    prompt: str
    params: dict[str, Any] = Field(default_factory=dict)
    locator: str
    content_type: str = "application/octet-stream"
    gallery_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
