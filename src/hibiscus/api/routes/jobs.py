"""Generation job API endpoints.

- POST /api/jobs - Submit a job (starts immediately)
- GET /api/jobs - List visible jobs with admission info
- GET /api/jobs/{job_id} - Job state
- GET /api/jobs/{job_id}/result - Delivered asset bytes
- POST /api/jobs/{job_id}/cancel - Request cancellation
- DELETE /api/jobs/{job_id} - Dismiss a finished job
- GET /api/recents/{kind} - Recent results for a job kind
- GET /api/notifications - Recent user notifications
"""

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from hibiscus.api.dependencies import get_notifier, get_scheduler
from hibiscus.models.job import GenerationJob, JobKind, JobStatus, RecentItem
from hibiscus.services.notifications import LogNotifier, Notification
from hibiscus.workers.scheduler import JobScheduler

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["jobs"])


# Request/Response Models


class SubmitJobRequest(BaseModel):
    """Request model for submitting a generation job."""

    prompt: str = Field(
        ...,
        description="Generation prompt",
        min_length=1,
        max_length=4000,
    )
    kind: JobKind = Field(
        default=JobKind.TXT2IMG,
        description="Job kind (txt2img, img2img, video)",
    )
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Generation parameters merged over the configured defaults",
    )


class SubmitJobResponse(BaseModel):
    job_id: int = Field(..., description="Id of the new job")
    status: JobStatus = Field(..., description="Status right after submission")
    at_capacity: bool = Field(
        ...,
        description="True if the advisory concurrency limit was already reached",
    )


class JobDTO(BaseModel):
    """Data Transfer Object for job state in API responses."""

    id: int
    kind: JobKind
    prompt: str
    params: dict[str, Any]
    status: JobStatus
    safety_attempts: int = Field(..., description="Content-filter retries so far")
    max_retries: int = Field(..., description="Content-filter retry budget")
    cancelled: bool
    error: str | None = Field(default=None, description="User-facing error message")
    error_kind: str | None = Field(default=None, description="Error classification")
    locator: str | None = Field(default=None, description="Request URL of the result")
    gallery_id: str | None = Field(default=None, description="Stored gallery item id")
    created_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobDTO":
        return cls(
            id=job.id,
            kind=job.kind,
            prompt=job.prompt,
            params=job.params,
            status=job.status,
            safety_attempts=job.safety_attempts,
            max_retries=job.max_retries,
            cancelled=job.cancelled,
            error=job.error,
            error_kind=job.error_kind,
            locator=job.result.locator if job.result else None,
            gallery_id=job.result.gallery_id if job.result else None,
            created_at=job.created_at,
            finished_at=job.finished_at,
        )


class JobsResponse(BaseModel):
    jobs: list[JobDTO]
    active: int = Field(..., description="Jobs currently running or waiting to retry")
    at_capacity: bool


class CancelJobResponse(BaseModel):
    job_id: int
    cancel_requested: bool


# API Endpoints


def _get_job_or_404(scheduler: JobScheduler, job_id: int) -> GenerationJob:
    job = scheduler.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post("/jobs", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    request: SubmitJobRequest,
    scheduler: JobScheduler = Depends(get_scheduler),
) -> SubmitJobResponse:
    """Submit a generation job. Execution starts right away.

    Example:
        POST /api/jobs
        {"prompt": "a red fox", "kind": "txt2img", "params": {"width": 768}}

        Response 202:
        {"job_id": 1, "status": "pending", "at_capacity": false}
    """
    at_capacity = scheduler.at_capacity
    try:
        job_id = scheduler.submit(request.prompt, request.params, request.kind)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    job = _get_job_or_404(scheduler, job_id)
    return SubmitJobResponse(job_id=job_id, status=job.status, at_capacity=at_capacity)


@router.get("/jobs", response_model=JobsResponse)
async def list_jobs(scheduler: JobScheduler = Depends(get_scheduler)) -> JobsResponse:
    jobs = sorted(scheduler.jobs.values(), key=lambda job: job.id)
    return JobsResponse(
        jobs=[JobDTO.from_job(job) for job in jobs],
        active=scheduler.active_count,
        at_capacity=scheduler.at_capacity,
    )


@router.get("/jobs/{job_id}", response_model=JobDTO)
async def get_job(job_id: int, scheduler: JobScheduler = Depends(get_scheduler)) -> JobDTO:
    return JobDTO.from_job(_get_job_or_404(scheduler, job_id))


@router.get("/jobs/{job_id}/result")
async def get_job_result(
    job_id: int, scheduler: JobScheduler = Depends(get_scheduler)
) -> Response:
    """Raw asset bytes of a completed job.

    Raises:
        HTTPException 404: Unknown (or already evicted) job
        HTTPException 409: Job has no result yet
    """
    job = _get_job_or_404(scheduler, job_id)
    if job.result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {job.status.value}, no result available",
        )
    return Response(content=job.result.content, media_type=job.result.content_type)


@router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(
    job_id: int, scheduler: JobScheduler = Depends(get_scheduler)
) -> CancelJobResponse:
    job = _get_job_or_404(scheduler, job_id)
    if not scheduler.cancel(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job already {job.status.value}",
        )
    return CancelJobResponse(job_id=job_id, cancel_requested=True)


@router.delete("/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def dismiss_job(job_id: int, scheduler: JobScheduler = Depends(get_scheduler)) -> None:
    job = _get_job_or_404(scheduler, job_id)
    if not scheduler.dismiss(job_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job is {job.status.value}; cancel it before dismissing",
        )
    logger.info("job.dismissed", job_id=job_id)


@router.get("/recents/{kind}", response_model=list[RecentItem])
async def get_recents(
    kind: JobKind, scheduler: JobScheduler = Depends(get_scheduler)
) -> list[RecentItem]:
    return scheduler.recent(kind)


@router.get("/notifications", response_model=list[Notification])
async def get_notifications(
    limit: int = Query(default=20, ge=1, le=100),
    notifier: LogNotifier = Depends(get_notifier),
) -> list[Notification]:
    return notifier.recent(limit)
