"""Parallel job scheduler for generation requests.

Each submitted job runs as its own asyncio task. Jobs share nothing except the
generation client (and with it the credential rotator) and the gallery, so
they may finish in any order. Admission control is advisory: ``at_capacity``
is reported but never blocks a submission.

Per-job policy:

- Content-filter rejections re-seed the request and retry up to the job's own
  attempt budget, separate from every other job.
- Transient server, rate-limit and network failures get a short bounded retry
  with backoff, separate from the content-filter budget.
- Everything else fails the job immediately with a classified error.

Completed jobs are evicted after a short delay; failed and cancelled jobs stay
until dismissed (or until the periodic cleanup removes old ones).
"""

import asyncio
import random
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

import structlog

from hibiscus.core.config import Settings
from hibiscus.models.job import (
    GenerationJob,
    JobKind,
    JobResult,
    JobStatus,
    RecentItem,
)
from hibiscus.models.stats import UsageStats
from hibiscus.services.downloads import generate_filename, save_download
from hibiscus.services.exceptions import ErrorKind, SafetyRetriesExhaustedError, ServiceError
from hibiscus.services.gallery import Gallery
from hibiscus.services.generation.classifier import describe_error, outcome_to_error
from hibiscus.services.generation.client import GenerationClient
from hibiscus.services.generation.outcomes import (
    RETRYABLE_TRANSIENT,
    OutcomeKind,
    RequestOutcome,
)
from hibiscus.services.generation.retry import RETRY_DELAYS, SleepFunc, backoff_delay
from hibiscus.services.generation.url_builder import SEED_PARAM, random_seed
from hibiscus.services.notifications import Notifier

logger = structlog.get_logger(__name__)

JOB_SAFETY_RETRY_DELAY = 1.0
JOB_TRANSIENT_RETRIES = 3

_PANEL_KINDS = (ErrorKind.AUTH, ErrorKind.BALANCE)


class JobScheduler:
    """Runs generation jobs concurrently and tracks their state for display."""

    def __init__(
        self,
        client: GenerationClient,
        gallery: Gallery,
        notifier: Notifier,
        settings: Settings,
        *,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize scheduler.

        Args:
            client: Generation client shared by all jobs
            gallery: Persistence collaborator (failures are non-fatal)
            notifier: User notification sink
            settings: Application settings, read at submission time
            sleep: Delay function (tests inject a recording no-op)
            rng: Random source for re-seeding after content-filter rejections
        """
        self.client = client
        self.gallery = gallery
        self.notifier = notifier
        self.settings = settings
        self.stats = UsageStats()
        self.jobs: dict[int, GenerationJob] = {}
        self.recents: dict[JobKind, deque[RecentItem]] = {
            kind: deque(maxlen=settings.recent_items_limit) for kind in JobKind
        }
        self._sleep = sleep
        self._rng = rng
        self._next_id = 1
        self._tasks: dict[int, asyncio.Task] = {}
        self._evictions: dict[int, asyncio.TimerHandle] = {}

    @property
    def active_count(self) -> int:
        return sum(1 for job in self.jobs.values() if job.is_active)

    @property
    def at_capacity(self) -> bool:
        return self.active_count >= self.settings.max_concurrent_jobs

    def submit(
        self,
        prompt: str,
        params: Optional[Mapping[str, Any]] = None,
        kind: JobKind = JobKind.TXT2IMG,
    ) -> int:
        """Create a job and start executing it immediately.

        Caller params are merged over the configured defaults for the kind.
        Must be called from inside a running event loop.

        Returns:
            The new job id

        Raises:
            ValueError: If the prompt is empty
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        job_id = self._next_id
        self._next_id += 1

        job = GenerationJob(
            id=job_id,
            kind=kind,
            prompt=prompt,
            params={**self.settings.generation_defaults(kind), **(params or {})},
            max_retries=self.settings.job_safety_retries,
            auto_download=self.settings.auto_download,
        )
        self.jobs[job_id] = job

        if self.at_capacity:
            logger.warning(
                "scheduler.over_capacity",
                active=self.active_count,
                max_concurrent=self.settings.max_concurrent_jobs,
            )

        logger.info("job.submitted", job_id=job_id, kind=kind.value, prompt=prompt[:100])
        task = asyncio.create_task(self.execute(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return job_id

    def get(self, job_id: int) -> Optional[GenerationJob]:
        return self.jobs.get(job_id)

    async def execute(self, job_id: int) -> None:
        """Drive one job to a terminal state. Never raises for job failures."""
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return

        job.mark_running()
        logger.info("job.started", job_id=job.id, kind=job.kind.value)

        try:
            if job.kind is JobKind.VIDEO:
                await self._run_video(job)
            else:
                await self._run_image(job)
        except ServiceError as e:
            # A failure that arrives after cancel was requested is still a cancel
            if job.cancelled and not job.is_terminal:
                self._finish_cancelled(job)
            else:
                self._fail(job, e)
        except asyncio.CancelledError:
            if not job.is_terminal:
                job.mark_cancelled()
            raise
        except Exception as e:
            logger.error(
                "job.unexpected_error",
                job_id=job.id,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            self._fail(job, e)

    async def _run_image(self, job: GenerationJob) -> None:
        transient_attempts = 0

        while True:
            if job.cancelled:
                self._finish_cancelled(job)
                return
            if job.status is JobStatus.RETRY:
                job.mark_running()

            locator = self.client.build_locator(job.prompt, job.params)
            outcome = await self.client.dispatch(locator)

            # Result of a request that was in flight when cancel arrived is dropped
            if job.cancelled:
                self._finish_cancelled(job)
                return

            if outcome.is_success:
                await self._complete(job, outcome)
                return

            if outcome.kind is OutcomeKind.CONTENT_FILTERED:
                if job.safety_attempts >= job.max_retries:
                    raise SafetyRetriesExhaustedError(job.max_retries)
                job.mark_retry()
                job.params[SEED_PARAM] = random_seed(self._rng)
                logger.warning(
                    "job.safety_retry",
                    job_id=job.id,
                    attempt=job.safety_attempts,
                    max_retries=job.max_retries,
                    seed=job.params[SEED_PARAM],
                )
                await self._sleep(JOB_SAFETY_RETRY_DELAY)
                continue

            if (
                outcome.kind in (*RETRYABLE_TRANSIENT, OutcomeKind.NETWORK_ERROR)
                and transient_attempts < JOB_TRANSIENT_RETRIES
            ):
                transient_attempts += 1
                delay = backoff_delay(transient_attempts, outcome.kind, RETRY_DELAYS)
                logger.warning(
                    "job.transient_retry",
                    job_id=job.id,
                    outcome=outcome.kind.value,
                    attempt=transient_attempts,
                    delay_seconds=delay,
                )
                self.notifier.notify(
                    f"Connection issue, retrying ({transient_attempts}/{JOB_TRANSIENT_RETRIES})",
                    "info",
                )
                await self._sleep(delay)
                continue

            raise outcome_to_error(outcome)

    async def _run_video(self, job: GenerationJob) -> None:
        outcome = await self.client.generate_video(job.prompt, job.params)
        if job.cancelled:
            self._finish_cancelled(job)
            return
        await self._complete(job, outcome)

    async def _complete(self, job: GenerationJob, outcome: RequestOutcome) -> None:
        job.mark_completed(
            JobResult(
                content=outcome.content,
                locator=outcome.locator,
                content_type=outcome.content_type,
            )
        )
        asset_kind = "video" if job.kind is JobKind.VIDEO else "image"

        try:
            item = await self.gallery.save(asset_kind, job.prompt, job.params, outcome.content)
        except Exception as e:
            # Persistence failures never fail the job
            logger.error(
                "job.gallery_save_failed",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            item = None
        if item and job.result is not None:
            job.result.gallery_id = item.get("id")

        if job.kind is JobKind.VIDEO:
            self.stats.videos += 1
        else:
            self.stats.images += 1

        if job.auto_download:
            await self._download(job, outcome.content, asset_kind)

        try:
            await self.gallery.update_stats(self.stats)
        except Exception as e:
            logger.error(
                "job.stats_update_failed",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        self.recents[job.kind].appendleft(
            RecentItem(
                job_id=job.id,
                kind=job.kind,
                prompt=job.prompt,
                params=dict(job.params),
                locator=outcome.locator,
                content_type=outcome.content_type,
                gallery_id=job.result.gallery_id if job.result else None,
            )
        )

        label = "Video" if job.kind is JobKind.VIDEO else "Image"
        if job.safety_attempts > 0:
            self.notifier.notify(
                f"{label} generated after {job.safety_attempts + 1} attempts", "success"
            )
        else:
            self.notifier.notify(f"{label} generated", "success")

        logger.info(
            "job.completed",
            job_id=job.id,
            kind=job.kind.value,
            attempts=job.safety_attempts + 1,
            size_bytes=len(outcome.content),
        )
        self._schedule_eviction(job.id)

    async def _download(self, job: GenerationJob, content: bytes, asset_kind: str) -> None:
        relative_path = generate_filename(job.prompt, asset_kind, self.settings.filename_format)
        try:
            path = await asyncio.to_thread(
                save_download, content, self.settings.download_dir, relative_path
            )
        except OSError as e:
            logger.error("job.download_failed", job_id=job.id, error=str(e))
            self.notifier.notify(f"Download failed: {e}", "warning")
            return
        self.stats.downloads += 1
        logger.info("job.downloaded", job_id=job.id, path=str(path))

    def _fail(self, job: GenerationJob, error: BaseException) -> None:
        if job.is_terminal:
            logger.error("job.error_after_finish", job_id=job.id, error_message=str(error))
            return
        info = describe_error(error)
        job.mark_failed(info.display, info.kind.value)
        logger.error(
            "job.failed",
            job_id=job.id,
            error_kind=info.kind.value,
            error_type=type(error).__name__,
            error_message=str(error),
            safety_attempts=job.safety_attempts,
        )
        if info.kind in _PANEL_KINDS:
            self.notifier.show_error_panel(info.kind.value, info.display)
        else:
            self.notifier.notify(info.display, "error")

    def _finish_cancelled(self, job: GenerationJob) -> None:
        job.mark_cancelled()
        logger.info("job.cancelled", job_id=job.id, safety_attempts=job.safety_attempts)
        self.notifier.notify("Generation cancelled", "info")

    def cancel(self, job_id: int) -> bool:
        """Flag a job for cancellation; it stops at its next check.

        Returns:
            False if the job does not exist or already finished
        """
        job = self.jobs.get(job_id)
        if job is None or job.is_terminal:
            return False
        job.cancelled = True
        logger.info("job.cancel_requested", job_id=job_id, status=job.status.value)
        return True

    def dismiss(self, job_id: int) -> bool:
        """Remove a finished job from view. Running jobs cannot be dismissed."""
        job = self.jobs.get(job_id)
        if job is None or not job.is_terminal:
            return False
        self._remove(job_id)
        return True

    def _schedule_eviction(self, job_id: int) -> None:
        loop = asyncio.get_running_loop()
        self._evictions[job_id] = loop.call_later(
            self.settings.completed_job_ttl_seconds, self._remove, job_id
        )

    def _remove(self, job_id: int) -> None:
        handle = self._evictions.pop(job_id, None)
        if handle is not None:
            handle.cancel()
        self.jobs.pop(job_id, None)

    def cleanup_old_jobs(self, max_age_seconds: Optional[float] = None) -> int:
        """Remove finished jobs older than ``max_age_seconds``. Returns the count."""
        if max_age_seconds is None:
            max_age_seconds = self.settings.job_cleanup_age_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        stale = [
            job_id
            for job_id, job in self.jobs.items()
            if job.is_terminal and job.created_at < cutoff
        ]
        for job_id in stale:
            self._remove(job_id)
        if stale:
            logger.info("scheduler.cleanup", removed=len(stale))
        return len(stale)

    def recent(self, kind: JobKind) -> list[RecentItem]:
        """Most recent results for a kind, newest first."""
        return list(self.recents[kind])

    def remove_from_recents(self, gallery_id: str) -> bool:
        """Drop a deleted gallery item from every recents buffer."""
        removed = False
        for kind, items in self.recents.items():
            kept = [item for item in items if item.gallery_id != gallery_id]
            if len(kept) != len(items):
                self.recents[kind] = deque(kept, maxlen=items.maxlen)
                removed = True
        return removed

    async def join(self) -> None:
        """Wait for every running job task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all running job tasks and pending evictions."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        logger.info("scheduler.shutdown", cancelled_tasks=len(tasks))


async def run_cleanup_worker(scheduler: JobScheduler, interval_seconds: float) -> None:
    """Periodically evict old finished jobs until cancelled."""
    logger.info("cleanup_worker.started", interval_seconds=interval_seconds)
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            scheduler.cleanup_old_jobs()
    except asyncio.CancelledError:
        logger.info("cleanup_worker.stopped")
        raise
