from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from matviews.config import settings
from matviews.db import get_db
from matviews.jobs.adapter import JobAdapter, get_job_adapter
from matviews.jobs.create_view_job import CreateViewJob
from matviews.jobs.delete_view_job import DeleteViewJob
from matviews.jobs.refresh_view_job import RefreshViewJob
from matviews.models.mat_views import MatViewDefinition
from matviews.schemas.mat_views import EnqueuedJob, MatViewDefinition as MatViewDefinitionSchema

router = APIRouter()


def _get_definition(db: Session, definition_id: int) -> MatViewDefinition:
    definition = db.get(MatViewDefinition, definition_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Definition {definition_id} not found")
    return definition


def _enqueue(adapter: JobAdapter, job_class, definition: MatViewDefinition, **options) -> EnqueuedJob:
    result = adapter.enqueue(job_class, settings.job_queue, args=[definition.id], kwargs=options)
    return EnqueuedJob(
        definition_id=definition.id,
        job=job_class.__name__,
        queue=settings.job_queue,
        adapter=adapter.name,
        options=options,
        result=result if isinstance(result, dict) else None,
    )


@router.get("", response_model=List[MatViewDefinitionSchema])
def list_definitions(
    db: Session = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000)
):
    return db.query(MatViewDefinition).order_by(MatViewDefinition.id).offset(skip).limit(limit).all()


@router.get("/{definition_id}", response_model=MatViewDefinitionSchema)
def get_definition(definition_id: int, db: Session = Depends(get_db)):
    return _get_definition(db, definition_id)


@router.post("/{definition_id}/create", response_model=EnqueuedJob, status_code=status.HTTP_202_ACCEPTED)
def create_view(
    definition_id: int,
    force: bool = Query(False),
    db: Session = Depends(get_db),
    adapter: JobAdapter = Depends(get_job_adapter),
):
    definition = _get_definition(db, definition_id)
    return _enqueue(adapter, CreateViewJob, definition, force=force)


@router.post("/{definition_id}/refresh", response_model=EnqueuedJob, status_code=status.HTTP_202_ACCEPTED)
def refresh_view(
    definition_id: int,
    row_count_strategy: Optional[str] = Query(None, pattern="^(none|estimated|exact)$"),
    db: Session = Depends(get_db),
    adapter: JobAdapter = Depends(get_job_adapter),
):
    definition = _get_definition(db, definition_id)
    strategy = row_count_strategy or settings.default_row_count_strategy
    return _enqueue(adapter, RefreshViewJob, definition, row_count_strategy=strategy)


@router.post("/{definition_id}/delete", response_model=EnqueuedJob, status_code=status.HTTP_202_ACCEPTED)
def delete_view(
    definition_id: int,
    cascade: bool = Query(False),
    if_exists: bool = Query(True),
    db: Session = Depends(get_db),
    adapter: JobAdapter = Depends(get_job_adapter),
):
    definition = _get_definition(db, definition_id)
    return _enqueue(adapter, DeleteViewJob, definition, cascade=cascade, if_exists=if_exists)
