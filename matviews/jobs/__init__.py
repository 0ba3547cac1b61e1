from matviews.jobs.adapter import (
    InlineJobAdapter,
    JobAdapter,
    SchedulerJobAdapter,
    build_job_adapter,
    get_job_adapter,
)
from matviews.jobs.create_view_job import CreateViewJob
from matviews.jobs.delete_view_job import DeleteViewJob
from matviews.jobs.refresh_view_job import RefreshViewJob

__all__ = [
    "CreateViewJob",
    "DeleteViewJob",
    "InlineJobAdapter",
    "JobAdapter",
    "RefreshViewJob",
    "SchedulerJobAdapter",
    "build_job_adapter",
    "get_job_adapter",
]
