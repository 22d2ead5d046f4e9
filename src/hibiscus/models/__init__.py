"""Domain models for generation jobs and usage statistics."""

from hibiscus.models.job import (
    GenerationJob,
    InvalidStateTransition,
    JobKind,
    JobResult,
    JobStatus,
    RecentItem,
)
from hibiscus.models.stats import UsageStats

__all__ = [
    "GenerationJob",
    "InvalidStateTransition",
    "JobKind",
    "JobResult",
    "JobStatus",
    "RecentItem",
    "UsageStats",
]
