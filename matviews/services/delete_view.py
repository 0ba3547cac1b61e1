import logging

from sqlalchemy.exc import DBAPIError

from matviews.services import sql_builder
from matviews.services.base_service import BaseService, UNKNOWN_ROW_COUNT
from matviews.services.errors import (
    DEPENDENT_OBJECTS_STILL_EXIST,
    DependentObjectsError,
    InvalidDefinitionError,
    ViewNotFoundError,
    sqlstate_of,
)
from matviews.services.service_response import ServiceResponse, ServiceStatus

logger = logging.getLogger(__name__)


class DeleteView(BaseService):
    """
    Drop a materialized view.

    Options:
        cascade: default False (RESTRICT)
        if_exists: default True; a missing view is ``skipped`` instead of an error
    """

    operation_name = "delete_view"

    def __init__(self, definition, cascade: bool = False, if_exists: bool = True, **kwargs):
        super().__init__(definition, **kwargs)
        self.cascade = bool(cascade)
        self.if_exists = bool(if_exists)

    def assign_request(self) -> None:
        self.request = {
            "row_count_strategy": self.row_count_strategy.value,
            "cascade": self.cascade,
            "if_exists": self.if_exists,
        }

    def prepare(self) -> None:
        if not self.valid_name():
            raise InvalidDefinitionError(f"Invalid view name format: {self.definition.name!r}")
        if not self.if_exists and not self.view_exists():
            raise ViewNotFoundError(f"Materialized view {self.view_label} does not exist")

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label, "sql": None}

        if not self.view_exists():
            logger.info(f"{self.view_label} not present, nothing to drop")
            self.response.update(row_count_before=UNKNOWN_ROW_COUNT, row_count_after=UNKNOWN_ROW_COUNT)
            return self.ok(ServiceStatus.SKIPPED)

        self.response["row_count_before"] = self.fetch_rows_count()

        drop_sql = sql_builder.drop_view_sql(self.schema, self.rel, cascade=self.cascade)
        try:
            self.execute_sql(drop_sql)
        except DBAPIError as exc:
            if sqlstate_of(exc) == DEPENDENT_OBJECTS_STILL_EXIST:
                detail = str(exc.orig).strip().splitlines()[0] if exc.orig else str(exc)
                raise DependentObjectsError(
                    f"{detail} - dependencies exist. Use cascade=True to force drop."
                ) from exc
            raise

        self.response["sql"] = drop_sql
        self.response["row_count_after"] = UNKNOWN_ROW_COUNT
        return self.ok(ServiceStatus.DELETED)
