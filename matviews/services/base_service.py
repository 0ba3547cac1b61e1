"""
Base class for services that operate on PostgreSQL materialized views.

Every concrete service follows the same three phases, sequenced by
``BaseService.run``:

1. ``assign_request``: normalize and record the options it was called with
2. ``prepare``: raise on any precondition violation
3. ``execute``: run the DDL/DML and build the ServiceResponse

Any exception raised by those phases is turned into an ``error`` response;
``run`` never raises.
"""
import enum
import logging
import re
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Union

from psycopg.pq import TransactionStatus
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from matviews.services import sql_builder
from matviews.services.errors import MatViewError
from matviews.services.service_response import ServiceResponse, ServiceStatus

logger = logging.getLogger(__name__)

VIEW_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Valor centinela cuando no se cuentan filas
UNKNOWN_ROW_COUNT = -1

Bind = Union[Engine, Connection]


class RowCountStrategy(str, enum.Enum):
    NONE = "none"
    ESTIMATED = "estimated"
    EXACT = "exact"


DEFAULT_ROW_COUNT_STRATEGY = RowCountStrategy.ESTIMATED


def normalize_row_count_strategy(value: Any) -> RowCountStrategy:
    """Map user input to a RowCountStrategy; unknown values mean ``none``."""
    if isinstance(value, RowCountStrategy):
        return value
    if value is None:
        return RowCountStrategy.NONE
    try:
        return RowCountStrategy(str(value).strip().lower())
    except ValueError:
        return RowCountStrategy.NONE


class BaseService(ABC):
    """
    Template for create/refresh/delete services.

    Args:
        definition: A MatViewDefinition (or any object exposing ``name``,
            ``sql``, ``refresh_strategy`` and ``unique_index_columns``)
        row_count_strategy: ``none``, ``estimated`` or ``exact``
        bind: Engine to open a dedicated AUTOCOMMIT connection from, or an
            existing Connection whose transaction the caller owns. Defaults
            to the package engine.
    """

    operation_name = "operation"

    def __init__(
        self,
        definition,
        row_count_strategy: Any = DEFAULT_ROW_COUNT_STRATEGY,
        bind: Optional[Bind] = None,
    ):
        self.definition = definition
        self.row_count_strategy = normalize_row_count_strategy(row_count_strategy)
        self.bind = bind
        self.request: dict = {}
        self.response: dict = {}
        self.conn = None
        self.owns_connection = False
        self._schema: Optional[str] = None
        self._current_user: Optional[str] = None

    # ========================================================================
    # template
    # ========================================================================

    def run(self) -> ServiceResponse:
        logger.info(f"{self.operation_name} started for {self.rel}")
        try:
            self.assign_request()
            with self._connection():
                self.prepare()
                result = self.execute()
        except Exception as exc:
            # errores de dominio sin traceback; el resto con traceback completo
            logger.error(
                f"{self.operation_name} failed for {self.rel}: {type(exc).__name__}: {exc}",
                exc_info=not isinstance(exc, MatViewError),
            )
            return self.error_response(exc)

        logger.info(f"{self.operation_name} {self.rel}: {result.status.value}")
        return result

    @abstractmethod
    def assign_request(self) -> None:
        """Populate ``self.request`` with the normalized options."""

    @abstractmethod
    def prepare(self) -> None:
        """Raise if any precondition does not hold."""

    @abstractmethod
    def execute(self) -> ServiceResponse:
        """Perform the operation and return the response."""

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        bind = self.bind
        if bind is None:
            from matviews.db import engine
            bind = engine

        # Engine -> conexión propia; Connection -> la transacción es del llamador
        if not hasattr(bind, "connect"):
            self.conn = bind
            self.owns_connection = False
            try:
                yield bind
            finally:
                self.conn = None
            return

        with bind.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT")
            self.conn = conn
            self.owns_connection = True
            try:
                yield conn
            finally:
                self.conn = None
                self.owns_connection = False

    # ========================================================================
    # definition accessors
    # ========================================================================

    @property
    def rel(self) -> str:
        return str(self.definition.name)

    @property
    def sql(self) -> str:
        return str(self.definition.sql or "")

    @property
    def strategy(self) -> str:
        value = self.definition.refresh_strategy
        return str(getattr(value, "value", value) or "regular")

    @property
    def cols(self) -> List[str]:
        return sql_builder.normalize_columns(self.definition.unique_index_columns)

    @property
    def schema(self) -> str:
        if self._schema is None:
            self._schema = self.first_existing_schema()
        return self._schema

    @property
    def qualified_rel(self) -> str:
        return sql_builder.qualified_name(self.schema, self.rel)

    @property
    def view_label(self) -> str:
        """Unquoted ``schema.name`` used in responses and logs."""
        return f"{self.schema}.{self.rel}"

    def valid_name(self) -> bool:
        return bool(VIEW_NAME_PATTERN.match(self.rel))

    def valid_sql(self) -> bool:
        return self.sql.strip().upper().startswith("SELECT")

    # ========================================================================
    # low level execution
    # ========================================================================

    def select_value(self, sql: str, params: Optional[dict] = None):
        return self.conn.execute(text(sql), params or {}).scalar()

    def execute_sql(self, sql: str) -> str:
        """Run a generated DDL statement verbatim and return it."""
        logger.debug(f"executing: {sql}")
        self.conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
        return sql

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a block inside a real database transaction.

        Owned connections live in AUTOCOMMIT, so the isolation level is
        switched for the duration of the block. Borrowed connections get a
        SAVEPOINT inside the caller's transaction.
        """
        if not self.owns_connection:
            with self.conn.begin_nested():
                yield
            return

        self.conn.commit()
        self.conn.execution_options(isolation_level="READ COMMITTED")
        try:
            with self.conn.begin():
                yield
        finally:
            self.conn.execution_options(isolation_level="AUTOCOMMIT")

    # ========================================================================
    # schema resolution
    # ========================================================================

    def first_existing_schema(self) -> str:
        """
        Resolve the first existing schema from the search_path.

        Handles ``$user`` and quoted tokens; ``public`` is always the last
        candidate and the final fallback.
        """
        raw_path = self.select_value("SELECT current_setting('search_path')") or "public"
        candidates = []
        for token in str(raw_path).split(","):
            schema = self.resolve_schema_token(token)
            if schema and schema not in candidates:
                candidates.append(schema)
        if "public" not in candidates:
            candidates.append("public")

        for schema in candidates:
            if self.schema_exists(schema):
                return schema
        return "public"

    def resolve_schema_token(self, token: str) -> str:
        cleaned = token.strip()
        if len(cleaned) >= 2 and cleaned.startswith('"') and cleaned.endswith('"'):
            cleaned = cleaned[1:-1]
        if cleaned == "$user":
            return self.current_user()
        return cleaned

    def current_user(self) -> str:
        if self._current_user is None:
            self._current_user = self.select_value("SELECT current_user")
        return self._current_user

    def schema_exists(self, name: str) -> bool:
        return bool(self.select_value("SELECT to_regnamespace(:name) IS NOT NULL", {"name": name}))

    # ========================================================================
    # catalog checks
    # ========================================================================

    def view_exists(self) -> bool:
        count = self.select_value(
            """
            SELECT COUNT(*)
            FROM pg_matviews
            WHERE schemaname = :schema AND matviewname = :rel
            """,
            {"schema": self.schema, "rel": self.rel},
        )
        return (count or 0) > 0

    def unique_index_exists(self) -> bool:
        count = self.select_value(
            """
            SELECT COUNT(*)
            FROM pg_index i
            JOIN pg_class c ON c.oid = i.indrelid
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = :schema
              AND c.relname = :rel
              AND i.indisunique = TRUE
            """,
            {"schema": self.schema, "rel": self.rel},
        )
        return (count or 0) > 0

    def index_exists(self, index_name: str) -> bool:
        count = self.select_value(
            """
            SELECT COUNT(*)
            FROM pg_indexes
            WHERE schemaname = :schema
              AND tablename = :rel
              AND indexname = :index_name
            """,
            {"schema": self.schema, "rel": self.rel, "index_name": index_name},
        )
        return (count or 0) > 0

    def pg_idle(self) -> bool:
        """
        Whether the driver connection sits outside any transaction/savepoint.

        Guards ``CREATE INDEX CONCURRENTLY``. A non-autocommit driver opens a
        transaction on the next statement, so it does not count as idle.
        Anything that cannot be determined means "not idle".
        """
        try:
            dbapi_conn = self.conn.connection.dbapi_connection
            status = getattr(getattr(dbapi_conn, "info", None), "transaction_status", None)
            if status is None or not getattr(dbapi_conn, "autocommit", False):
                return False
            return status == TransactionStatus.IDLE
        except Exception:
            return False

    # ========================================================================
    # row counting
    # ========================================================================

    def fetch_rows_count(self) -> int:
        if self.row_count_strategy == RowCountStrategy.ESTIMATED:
            return self.estimated_rows_count()
        if self.row_count_strategy == RowCountStrategy.EXACT:
            return self.exact_rows_count()
        return UNKNOWN_ROW_COUNT

    def estimated_rows_count(self) -> int:
        """
        Approximate count from ``pg_class.reltuples`` (may be stale).

        A never-analyzed relation reports -1 there, which is passed on as
        UNKNOWN_ROW_COUNT rather than a fake zero.
        """
        value = self.select_value(
            """
            SELECT c.reltuples::bigint
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE c.relkind IN ('m', 'r', 'p')
              AND n.nspname = :schema
              AND c.relname = :rel
            LIMIT 1
            """,
            {"schema": self.schema, "rel": self.rel},
        )
        if value is None or value < 0:
            return UNKNOWN_ROW_COUNT
        return int(value)

    def exact_rows_count(self) -> int:
        count_sql = sql_builder.count_rows_sql(self.schema, self.rel)
        return int(self.conn.exec_driver_sql(count_sql, execution_options={"no_parameters": True}).scalar() or 0)

    # ========================================================================
    # responses
    # ========================================================================

    def ok(self, status: ServiceStatus) -> ServiceResponse:
        return ServiceResponse.ok(status, request=self.request, response=self.response)

    def error_response(self, error: BaseException) -> ServiceResponse:
        return ServiceResponse.failure(error, request=self.request, response=self.response)
