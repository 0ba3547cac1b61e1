"""
Zero-downtime refresh by building a replacement view and renaming it in.
"""
import logging
import secrets
from typing import List, Optional

from matviews.services import sql_builder
from matviews.services.base_service import BaseService
from matviews.services.errors import ViewNotFoundError
from matviews.services.service_response import ServiceResponse, ServiceStatus

logger = logging.getLogger(__name__)


def random_suffix() -> str:
    return secrets.token_hex(4)


class SwapRefresh(BaseService):
    """
    Swap-style refresh.

    Steps:
        1. Create ``<name>__tmp_<hex>`` from the definition SQL, WITH DATA.
        2. In one transaction: rename ``<name>`` to ``<name>__old_<hex>``,
           rename the temp view to ``<name>``, drop the old view and recreate
           the declared unique index.

    Readers are never blocked by a refresh lock and no unique index is
    needed, at the cost of double storage while the replacement is built.
    If the transaction fails the temp view is dropped and the original view
    is left untouched.
    """

    operation_name = "swap_refresh"

    def __init__(self, definition, **kwargs):
        super().__init__(definition, **kwargs)
        self.tmp_rel = sql_builder.fit_identifier(self.rel, f"__tmp_{random_suffix()}")
        self.old_rel = sql_builder.fit_identifier(self.rel, f"__old_{random_suffix()}")

    def assign_request(self) -> None:
        self.request = {
            "row_count_strategy": self.row_count_strategy.value,
            "swap": True,
        }

    def prepare(self) -> None:
        if not self.view_exists():
            raise ViewNotFoundError(f"Materialized view {self.view_label} does not exist")

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label}
        self.response["row_count_before"] = self.fetch_rows_count()
        self.response["sql"] = self.swap_view()
        self.response["row_count_after"] = self.fetch_rows_count()
        return self.ok(ServiceStatus.UPDATED)

    def swap_view(self) -> List[str]:
        create_temp = self.execute_sql(sql_builder.create_view_sql(self.schema, self.tmp_rel, self.sql))

        steps = [
            sql_builder.rename_view_sql(self.schema, self.rel, self.old_rel),
            sql_builder.rename_view_sql(self.schema, self.tmp_rel, self.rel),
            sql_builder.drop_view_sql(self.schema, self.old_rel),
        ]
        index_sql = self.recreate_unique_index_sql()
        if index_sql:
            steps.append(index_sql)

        try:
            with self.atomic():
                for step in steps:
                    self.execute_sql(step)
        except Exception:
            self._drop_temp_view()
            raise

        return [create_temp, *steps]

    def recreate_unique_index_sql(self) -> Optional[str]:
        cols = self.cols
        if not cols:
            return None
        index_name = sql_builder.unique_index_name(self.schema, self.rel, cols)
        return sql_builder.create_unique_index_sql(index_name, self.schema, self.rel, cols)

    def _drop_temp_view(self) -> None:
        try:
            self.execute_sql(sql_builder.drop_view_sql(self.schema, self.tmp_rel))
        except Exception as cleanup_exc:
            logger.warning(f"Could not drop temp view {self.schema}.{self.tmp_rel}: {cleanup_exc}")
