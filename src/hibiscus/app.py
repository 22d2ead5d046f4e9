"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hibiscus import __version__
from hibiscus.api.routes import gallery, generation, jobs
from hibiscus.core.config import Settings, configure_logging
from hibiscus.services.gallery import GalleryClient, InMemoryGallery
from hibiscus.services.generation.client import GenerationClient
from hibiscus.services.notifications import LogNotifier
from hibiscus.workers.scheduler import JobScheduler, run_cleanup_worker

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Load settings, configure logging, connect the gallery, start the
      scheduler and the job cleanup worker
    - Shutdown: Cancel running jobs and the cleanup worker, close HTTP clients
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    if not settings.credentials_list:
        logger.warning("startup.no_api_key", message="Requests will be sent without a key")

    client = GenerationClient.from_settings(settings)

    # Fall back to process-local storage when the gallery server is not running
    gallery_client = GalleryClient(settings.gallery_url)
    if await gallery_client.check_connection():
        gallery = gallery_client
    else:
        logger.warning("startup.gallery_unavailable", url=settings.gallery_url)
        await gallery_client.close()
        gallery = InMemoryGallery()

    notifier = LogNotifier()
    scheduler = JobScheduler(client, gallery, notifier, settings)

    app.state.settings = settings
    app.state.client = client
    app.state.gallery = gallery
    app.state.notifier = notifier
    app.state.scheduler = scheduler

    cleanup_task = asyncio.create_task(
        run_cleanup_worker(scheduler, settings.job_cleanup_interval_seconds)
    )

    logger.info(
        "application.startup",
        api_base_url=settings.api_base_url,
        credentials=len(settings.credentials_list),
        gallery=type(gallery).__name__,
    )

    yield

    logger.info("application.shutdown")
    cleanup_task.cancel()
    await asyncio.gather(cleanup_task, return_exceptions=True)
    await scheduler.shutdown()
    await client.close()
    if isinstance(gallery, GalleryClient):
        await gallery.close()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Hibiscus API",
        description="AI image and video generation pipeline",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs.router)
    app.include_router(generation.router)
    app.include_router(gallery.router)

    @app.get("/health")
    async def health_check():
        """Health check with scheduler load."""
        scheduler: JobScheduler | None = getattr(app.state, "scheduler", None)
        if scheduler is None:
            return {"status": "starting"}
        return {
            "status": "healthy",
            "active_jobs": scheduler.active_count,
            "at_capacity": scheduler.at_capacity,
        }

    return app


# Create app instance for uvicorn
app = create_app()
