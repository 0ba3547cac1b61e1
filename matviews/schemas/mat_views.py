"""
Pydantic schemas for the materialized view API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from matviews.models.mat_views import RefreshStrategy, RunOperation, RunStatus


class MatViewDefinitionBase(BaseModel):
    """Declared view as exposed over the API."""
    name: str
    sql: str
    refresh_strategy: RefreshStrategy = RefreshStrategy.REGULAR
    unique_index_columns: List[str] = []
    dependencies: List[str] = []
    schedule_cron: Optional[str] = None


class MatViewDefinition(MatViewDefinitionBase):
    id: int
    last_refreshed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MatViewRun(BaseModel):
    """One create/refresh/drop run with its outcome."""
    id: int
    mat_view_definition_id: int
    operation: RunOperation
    status: RunStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    meta: Dict[str, Any] = {}
    error: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    row_count_before: Optional[int] = None
    row_count_after: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnqueuedJob(BaseModel):
    definition_id: int
    job: str
    queue: str
    adapter: str
    options: Dict[str, Any] = {}
    result: Optional[Dict[str, Any]] = None
