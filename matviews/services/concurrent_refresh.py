"""
Non-locking refresh for views that carry a unique index.
"""
import logging

from sqlalchemy.exc import DBAPIError

from matviews.services import sql_builder
from matviews.services.base_service import BaseService
from matviews.services.errors import (
    LOCK_CONTENTION_STATES,
    UniqueIndexMissingError,
    ViewLockedError,
    ViewNotFoundError,
    sqlstate_of,
)
from matviews.services.service_response import ServiceResponse, ServiceStatus

logger = logging.getLogger(__name__)


class ConcurrentRefresh(BaseService):
    """
    ``REFRESH MATERIALIZED VIEW CONCURRENTLY``.

    Keeps the view readable during the refresh. PostgreSQL requires at least
    one unique index on the view; without it the call fails in ``prepare``
    and no DDL is issued. Lock contention from another session comes back as
    a ``ViewLockedError`` response the caller can retry.
    """

    operation_name = "concurrent_refresh"

    def assign_request(self) -> None:
        self.request = {
            "row_count_strategy": self.row_count_strategy.value,
            "concurrent": True,
        }

    def prepare(self) -> None:
        if not self.view_exists():
            raise ViewNotFoundError(f"Materialized view {self.view_label} does not exist")
        if not self.unique_index_exists():
            raise UniqueIndexMissingError(
                f"Materialized view {self.view_label} must have a unique index for concurrent refresh"
            )

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label}
        self.response["row_count_before"] = self.fetch_rows_count()

        refresh_sql = sql_builder.refresh_view_sql(self.schema, self.rel, concurrently=True)
        try:
            self.execute_sql(refresh_sql)
        except DBAPIError as exc:
            if sqlstate_of(exc) in LOCK_CONTENTION_STATES:
                logger.warning(f"{self.view_label} is locked by another session: {exc.orig}")
                raise ViewLockedError(
                    f"Materialized view {self.view_label} is in use by another session; retry later ({exc.orig})"
                ) from exc
            raise

        self.response["sql"] = [refresh_sql]
        self.response["row_count_after"] = self.fetch_rows_count()
        return self.ok(ServiceStatus.UPDATED)
