from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from matviews.db import get_db
from matviews.models.mat_views import MatViewRun, RunOperation, RunStatus
from matviews.schemas.mat_views import MatViewRun as MatViewRunSchema

router = APIRouter()


@router.get("", response_model=List[MatViewRunSchema])
def list_runs(
    db: Session = Depends(get_db),
    operation: Optional[RunOperation] = None,
    status: Optional[RunStatus] = None,
    definition_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000)
):
    """Runs, newest first."""
    query = db.query(MatViewRun)
    if operation is not None:
        query = query.filter(MatViewRun.operation == operation)
    if status is not None:
        query = query.filter(MatViewRun.status == status)
    if definition_id is not None:
        query = query.filter(MatViewRun.mat_view_definition_id == definition_id)
    return query.order_by(MatViewRun.id.desc()).offset(skip).limit(limit).all()


@router.get("/{run_id}", response_model=MatViewRunSchema)
def get_run(run_id: int, db: Session = Depends(get_db)):
    run = db.get(MatViewRun, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run
