from matviews.jobs.base import MatViewJob
from matviews.models.mat_views import RunOperation
from matviews.services.delete_view import DeleteView


class DeleteViewJob(MatViewJob):
    operation = RunOperation.DROP

    def build_service(self, definition, bind, cascade: bool = False, if_exists: bool = True, row_count_strategy=None):
        return DeleteView(
            definition,
            cascade=cascade,
            if_exists=if_exists,
            row_count_strategy=row_count_strategy,
            bind=bind,
        )
