"""
Job backends.

``JobAdapter.enqueue(job_class, queue, args, kwargs)`` is the only way
triggers (API, CLI) hand work off. The backend is picked once from
``settings.job_adapter``:

- ``inline``: run the job synchronously, in the caller's thread
- ``scheduler``: submit a one-shot APScheduler job to a BackgroundScheduler,
  one thread-pool executor per queue name
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from matviews.config import Settings, settings

logger = logging.getLogger(__name__)


def perform_job(job_class, args: Sequence = (), kwargs: Optional[Dict[str, Any]] = None):
    """Entry point executed by every backend."""
    return job_class().perform(*args, **(kwargs or {}))


class JobAdapter(ABC):
    name = "adapter"

    @abstractmethod
    def enqueue(
        self,
        job_class,
        queue: str,
        args: Sequence = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Hand a job to the backend."""

    def start(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def drain(self) -> None:
        """Block until every enqueued job has finished, then stop."""
        self.shutdown()


class InlineJobAdapter(JobAdapter):
    """Runs the job immediately and returns its result (or raises)."""

    name = "inline"

    def enqueue(self, job_class, queue, args=(), kwargs=None):
        logger.info(f"Running {job_class.__name__} inline (queue={queue}) args={list(args)}")
        return perform_job(job_class, args, kwargs)


class SchedulerJobAdapter(JobAdapter):
    """
    APScheduler backend.

    Jobs are date-triggered for "now" and run on the executor whose alias is
    the queue name; executors are created on first use of a queue.
    """

    name = "scheduler"

    def __init__(self, workers: int = 4, default_queue: str = "default", scheduler: Optional[BackgroundScheduler] = None):
        self.workers = workers
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        # start() registra "default" por su cuenta si no existe
        self._queues = {"default"}
        self._ensure_queue(default_queue, force=True)

    def _ensure_queue(self, queue: str, force: bool = False) -> None:
        if queue in self._queues and not force:
            return
        self.scheduler.add_executor(ThreadPoolExecutor(self.workers), alias=queue)
        self._queues.add(queue)

    def enqueue(self, job_class, queue, args=(), kwargs=None):
        self._ensure_queue(queue)
        job = self.scheduler.add_job(
            perform_job,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
            args=[job_class, list(args), dict(kwargs or {})],
            executor=queue,
            name=f"{job_class.__name__}{list(args)}",
            misfire_grace_time=None,
        )
        logger.info(f"Enqueued {job_class.__name__} on queue {queue} as job {job.id}")
        return job.id

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"Job scheduler started ({self.workers} workers per queue)")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Job scheduler stopped")

    def drain(self, poll_seconds: float = 0.2) -> None:
        # los jobs con DateTrigger salen del jobstore al pasar al executor
        while self.scheduler.running and self.scheduler.get_jobs():
            time.sleep(poll_seconds)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Job scheduler drained")


ADAPTERS = {
    InlineJobAdapter.name: InlineJobAdapter,
    SchedulerJobAdapter.name: SchedulerJobAdapter,
}

_adapter: Optional[JobAdapter] = None


def build_job_adapter(config: Settings = settings) -> JobAdapter:
    name = (config.job_adapter or "inline").strip().lower()
    if name not in ADAPTERS:
        raise ValueError(f"Unknown job adapter {config.job_adapter!r}; expected one of {sorted(ADAPTERS)}")
    if name == SchedulerJobAdapter.name:
        return SchedulerJobAdapter(workers=config.job_workers, default_queue=config.job_queue)
    return InlineJobAdapter()


def get_job_adapter() -> JobAdapter:
    """Process-wide adapter, built on first use. Also a FastAPI dependency."""
    global _adapter
    if _adapter is None:
        _adapter = build_job_adapter(settings)
    return _adapter
