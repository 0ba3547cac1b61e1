from matviews.jobs.base import MatViewJob
from matviews.models.mat_views import RunOperation
from matviews.services.create_view import CreateView


class CreateViewJob(MatViewJob):
    operation = RunOperation.CREATE

    def build_service(self, definition, bind, force: bool = False, row_count_strategy=None):
        return CreateView(definition, force=force, row_count_strategy=row_count_strategy, bind=bind)
