import enum
import re
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, BigInteger, DateTime, String, Text, JSON, Enum, ForeignKey, Index, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from matviews.db import Base

# JSONB en PostgreSQL, JSON genérico en otros dialectos (tests con SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")

VIEW_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RefreshStrategy(str, enum.Enum):
    REGULAR = "regular"
    CONCURRENT = "concurrent"
    SWAP = "swap"


class RunStatus(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunOperation(str, enum.Enum):
    CREATE = "create"
    REFRESH = "refresh"
    DROP = "drop"


# Transiciones permitidas en código de producción
RUN_TRANSITIONS = {
    RunStatus.RUNNING: {RunStatus.SUCCESS, RunStatus.FAILED},
    RunStatus.SUCCESS: set(),
    RunStatus.FAILED: set(),
}


class InvalidRunTransition(Exception):
    pass


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class MatViewDefinition(Base):
    """
    Declared materialized view.

    Stores the canonical name and SELECT for a view plus the refresh strategy
    that decides which service a refresh uses. Attribute validators reject
    unsafe identifiers and non-SELECT bodies on assignment.
    """
    __tablename__ = "mat_view_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    sql = Column(Text, nullable=False)
    refresh_strategy = Column(
        Enum(RefreshStrategy, name="mat_view_refresh_strategy", values_callable=_enum_values),
        nullable=False,
        default=RefreshStrategy.REGULAR,
        server_default=RefreshStrategy.REGULAR.value,
    )
    schedule_cron = Column(String, nullable=True)
    unique_index_columns = Column(JsonType, nullable=False, default=list)
    dependencies = Column(JsonType, nullable=False, default=list)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    runs = relationship(
        "MatViewRun",
        back_populates="definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MatViewRun.id",
    )

    @validates("name")
    def _validate_name(self, key, value):
        if value is None or not VIEW_NAME_PATTERN.match(str(value)):
            raise ValueError(f"Invalid view name format: {value!r}")
        return value

    @validates("sql")
    def _validate_sql(self, key, value):
        if value is None or not str(value).strip().upper().startswith("SELECT"):
            raise ValueError("sql must begin with a SELECT")
        return value

    @validates("refresh_strategy")
    def _validate_strategy(self, key, value):
        return RefreshStrategy(value)

    @validates("unique_index_columns", "dependencies")
    def _validate_name_list(self, key, value):
        if value is None:
            return []
        # un str suelto se iteraría carácter a carácter
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"{key} must be a list of names, got {type(value).__name__}")
        return [str(item) for item in value]

    def check_consistency(self) -> None:
        """Cross-field rules, checked before every INSERT/UPDATE."""
        strategy = RefreshStrategy(self.refresh_strategy or RefreshStrategy.REGULAR)
        if strategy == RefreshStrategy.CONCURRENT and not self.unique_index_columns:
            raise ValueError("refresh_strategy=concurrent requires unique_index_columns (non-empty)")

    def last_run(self) -> Optional["MatViewRun"]:
        return self.runs[-1] if self.runs else None

    def __repr__(self) -> str:
        return f"<MatViewDefinition id={self.id} name={self.name!r} strategy={self.refresh_strategy}>"


class MatViewRun(Base):
    """Audit row for one create/refresh/drop invocation."""
    __tablename__ = "mat_view_runs"
    __table_args__ = (
        Index("idx_mat_view_runs_definition_started", "mat_view_definition_id", "started_at"),
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    mat_view_definition_id = Column(
        Integer,
        ForeignKey("mat_view_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    operation = Column(
        Enum(RunOperation, name="mat_view_run_operation", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        Enum(RunStatus, name="mat_view_run_status", values_callable=_enum_values),
        nullable=False,
        default=RunStatus.RUNNING,
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)
    meta = Column(JsonType, nullable=False, default=dict)
    error = Column(JsonType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    definition = relationship("MatViewDefinition", back_populates="runs")

    def _transition(self, target: RunStatus) -> None:
        current = RunStatus(self.status) if self.status is not None else RunStatus.RUNNING
        if target not in RUN_TRANSITIONS[current]:
            raise InvalidRunTransition(f"Cannot move run {self.id} from {current.value} to {target.value}")
        self.status = target

    def mark_success(self, finished_at: datetime, duration_ms: int, meta: Dict[str, Any]) -> None:
        self._transition(RunStatus.SUCCESS)
        self.finished_at = finished_at
        self.duration_ms = duration_ms
        self.meta = meta
        self.error = None

    def mark_failed(
        self,
        finished_at: datetime,
        duration_ms: int,
        error: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._transition(RunStatus.FAILED)
        self.finished_at = finished_at
        self.duration_ms = duration_ms
        self.error = error
        if meta is not None:
            self.meta = meta

    @property
    def error_message(self) -> Optional[str]:
        return (self.error or {}).get("message")

    @property
    def row_count_before(self) -> Optional[int]:
        return ((self.meta or {}).get("response") or {}).get("row_count_before")

    @property
    def row_count_after(self) -> Optional[int]:
        return ((self.meta or {}).get("response") or {}).get("row_count_after")


@event.listens_for(MatViewDefinition, "before_insert")
@event.listens_for(MatViewDefinition, "before_update")
def _check_definition(mapper, connection, target):
    target.check_consistency()
