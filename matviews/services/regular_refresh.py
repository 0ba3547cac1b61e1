from matviews.services import sql_builder
from matviews.services.base_service import BaseService
from matviews.services.errors import ViewNotFoundError
from matviews.services.service_response import ServiceResponse, ServiceStatus


class RegularRefresh(BaseService):
    """
    Locking ``REFRESH MATERIALIZED VIEW``.

    Blocks reads on the view while it runs; the safe default for small or
    rarely queried views.
    """

    operation_name = "regular_refresh"

    def assign_request(self) -> None:
        self.request = {"row_count_strategy": self.row_count_strategy.value}

    def prepare(self) -> None:
        if not self.view_exists():
            raise ViewNotFoundError(f"Materialized view {self.view_label} does not exist")

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label}
        self.response["row_count_before"] = self.fetch_rows_count()
        self.response["sql"] = [self.execute_sql(sql_builder.refresh_view_sql(self.schema, self.rel))]
        self.response["row_count_after"] = self.fetch_rows_count()
        return self.ok(ServiceStatus.UPDATED)
