"""
Run-recording wrapper shared by the create/refresh/delete jobs.

Each ``perform`` call:
    1. loads the definition (``DefinitionNotFoundError`` if it is gone)
    2. inserts a MatViewRun in ``running`` and commits it
    3. builds and runs the service, timing it with a monotonic clock
    4. finalizes the run as ``success`` or ``failed``

An exception escaping the service (or the finalization) still leaves a
``failed`` run behind before it propagates to the job backend.
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from matviews.config import settings
from matviews.models.mat_views import MatViewDefinition, MatViewRun, RunOperation, RunStatus
from matviews.services.base_service import BaseService
from matviews.services.errors import DefinitionNotFoundError, serialize_error
from matviews.services.service_response import ServiceResponse

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int(round((time.monotonic() - started) * 1000))


class MatViewJob(ABC):
    """
    Base job. Subclasses declare the run ``operation`` and build the service.

    Args:
        session_factory: Callable returning a new Session, defaults to
            ``matviews.db.SessionLocal``
    """

    operation: RunOperation
    queue = "default"

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from matviews.db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory

    @abstractmethod
    def build_service(self, definition: MatViewDefinition, bind, **options) -> BaseService:
        """Instantiate the service for this job."""

    def after_success(self, definition: MatViewDefinition, response: ServiceResponse) -> None:
        """Hook for definition bookkeeping after a successful run."""

    def perform(self, definition_id: int, **options) -> Dict[str, Any]:
        options.setdefault("row_count_strategy", settings.default_row_count_strategy)

        db = self.session_factory()
        try:
            definition = db.get(MatViewDefinition, definition_id)
            if definition is None:
                raise DefinitionNotFoundError(f"MatViewDefinition {definition_id} not found")

            run = MatViewRun(
                mat_view_definition_id=definition.id,
                operation=self.operation,
                status=RunStatus.RUNNING,
                started_at=_now(),
                meta={},
            )
            db.add(run)
            db.commit()
            logger.info(f"{self.operation.value} run {run.id} started for {definition.name}")

            started = time.monotonic()
            try:
                response = self.build_service(definition, db.get_bind(), **options).run()
                meta = {"request": response.request, "response": response.response}
                if response.is_error:
                    run.mark_failed(_now(), _elapsed_ms(started), error=response.error, meta=meta)
                else:
                    run.mark_success(_now(), _elapsed_ms(started), meta=meta)
                    self.after_success(definition, response)
                db.commit()
            except Exception as exc:
                logger.error(f"{self.operation.value} run {run.id} for {definition.name} raised: {exc}", exc_info=True)
                self._fail_run(db, run, started, exc)
                raise

            logger.info(f"{self.operation.value} run {run.id} finished: {run.status.value} ({run.duration_ms} ms)")
            return response.to_dict()
        finally:
            db.close()

    def _fail_run(self, db: Session, run: MatViewRun, started: float, exc: BaseException) -> None:
        db.rollback()
        run.mark_failed(_now(), _elapsed_ms(started), error=serialize_error(exc))
        db.commit()
