from datetime import datetime, timezone

from matviews.jobs.base import MatViewJob
from matviews.models.mat_views import RunOperation
from matviews.services import refresh_service_for


class RefreshViewJob(MatViewJob):
    """Refresh with the service matching the definition's refresh_strategy."""

    operation = RunOperation.REFRESH

    def build_service(self, definition, bind, row_count_strategy=None):
        service_class = refresh_service_for(definition.refresh_strategy)
        return service_class(definition, row_count_strategy=row_count_strategy, bind=bind)

    def after_success(self, definition, response):
        definition.last_refreshed_at = datetime.now(timezone.utc)
