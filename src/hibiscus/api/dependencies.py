"""FastAPI dependencies resolving shared services from app state.

The lifespan in ``hibiscus.app`` stores each long-lived service on
``app.state``; tests set the same attributes directly.
"""

from fastapi import Request

from hibiscus.services.gallery import Gallery
from hibiscus.services.generation.client import GenerationClient
from hibiscus.services.notifications import LogNotifier
from hibiscus.workers.scheduler import JobScheduler


def get_scheduler(request: Request) -> JobScheduler:
    """Get the job scheduler from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(scheduler: JobScheduler = Depends(get_scheduler)):
        ...     job_id = scheduler.submit("a red fox")
    """
    return request.app.state.scheduler


def get_client(request: Request) -> GenerationClient:
    """Get the generation client from app state."""
    return request.app.state.client


def get_gallery(request: Request) -> Gallery:
    return request.app.state.gallery


def get_notifier(request: Request) -> LogNotifier:
    return request.app.state.notifier
