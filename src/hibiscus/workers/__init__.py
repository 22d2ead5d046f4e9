"""Background job execution."""

from hibiscus.workers.scheduler import JobScheduler, run_cleanup_worker

__all__ = ["JobScheduler", "run_cleanup_worker"]
