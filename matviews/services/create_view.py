"""
Create a materialized view from its definition.
"""
import logging
from typing import List

from matviews.services import sql_builder
from matviews.services.base_service import BaseService, UNKNOWN_ROW_COUNT
from matviews.services.errors import InvalidDefinitionError
from matviews.services.service_response import ServiceResponse, ServiceStatus

logger = logging.getLogger(__name__)


class CreateView(BaseService):
    """
    Create the view ``WITH DATA`` so it is queryable right away.

    If the view already exists the call is a no-op (``skipped``) unless
    ``force`` is set, in which case the view is dropped and rebuilt. For the
    ``concurrent`` strategy a unique index over ``unique_index_columns`` is
    provisioned so later ``REFRESH ... CONCURRENTLY`` calls are allowed.

    Returns a ServiceResponse with status ``created``/``skipped``/``error`` and
    a response containing ``view``, ``sql``, ``created_indexes`` and the row
    counts before/after.
    """

    operation_name = "create_view"

    def __init__(self, definition, force: bool = False, **kwargs):
        super().__init__(definition, **kwargs)
        self.force = bool(force)
        self.statements: List[str] = []

    def assign_request(self) -> None:
        self.request = {
            "force": self.force,
            "row_count_strategy": self.row_count_strategy.value,
        }

    def prepare(self) -> None:
        if not self.valid_name():
            raise InvalidDefinitionError(f"Invalid view name format: {self.definition.name!r}")
        if not self.valid_sql():
            raise InvalidDefinitionError("SQL must start with SELECT")
        if self.strategy == "concurrent" and not self.cols:
            raise InvalidDefinitionError("refresh_strategy=concurrent requires unique_index_columns (non-empty)")

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label}

        existed = self.view_exists()
        if existed and not self.force:
            logger.info(f"{self.view_label} already exists, skipping create (force=False)")
            self.response.update(sql=[], created_indexes=[])
            return self.ok(ServiceStatus.SKIPPED)

        self.response["row_count_before"] = self.fetch_rows_count() if existed else UNKNOWN_ROW_COUNT

        create_sql = sql_builder.create_view_sql(self.schema, self.rel, self.sql)
        if existed:
            # DROP + CREATE juntos: si el CREATE falla la vista anterior sigue ahí
            logger.info(f"Dropping existing {self.view_label} before re-create (force=True)")
            drop_sql = sql_builder.drop_view_sql(self.schema, self.rel)
            with self.atomic():
                self.execute_sql(drop_sql)
                self.execute_sql(create_sql)
            self.statements.extend([drop_sql, create_sql])
        else:
            self.statements.append(self.execute_sql(create_sql))

        # el índice va fuera de la transacción (CONCURRENTLY)
        created_indexes = self.ensure_unique_index()

        self.response["sql"] = list(self.statements)
        self.response["created_indexes"] = created_indexes
        self.response["row_count_after"] = self.fetch_rows_count()
        return self.ok(ServiceStatus.CREATED)

    def ensure_unique_index(self) -> List[str]:
        if self.strategy != "concurrent":
            return []

        index_name = sql_builder.unique_index_name(self.schema, self.rel, self.cols)
        if self.index_exists(index_name):
            return []

        # CONCURRENTLY solo fuera de transacción
        concurrently = self.pg_idle()
        self.statements.append(self.execute_sql(
            sql_builder.create_unique_index_sql(index_name, self.schema, self.rel, self.cols, concurrently=concurrently)
        ))
        return [index_name]
