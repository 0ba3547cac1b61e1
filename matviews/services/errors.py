"""
Error taxonomy for materialized view operations.

Every error raised while preparing or executing an operation ends up
serialized into a ServiceResponse, so callers only ever see
``{class, message, backtrace}``.
"""
import traceback
from typing import Any, Dict, Optional

# SQLSTATE codes de PostgreSQL
OBJECT_IN_USE = "55006"
LOCK_NOT_AVAILABLE = "55P03"
DEPENDENT_OBJECTS_STILL_EXIST = "2BP01"

LOCK_CONTENTION_STATES = {OBJECT_IN_USE, LOCK_NOT_AVAILABLE}


class MatViewError(Exception):
    """Base class for errors raised by the lifecycle services."""


class InvalidDefinitionError(MatViewError):
    """Definition fails validation (name, SQL, unique index columns)."""


class ViewNotFoundError(MatViewError):
    """The materialized view was expected to exist but does not."""


class UniqueIndexMissingError(MatViewError):
    """CONCURRENTLY refresh requested on a view without a unique index."""


class ViewLockedError(MatViewError):
    """The view is locked by another session; the operation can be retried."""


class DependentObjectsError(MatViewError):
    """DROP ... RESTRICT blocked by dependent objects."""


class DefinitionNotFoundError(MatViewError):
    """No definition row matches the requested id or name."""


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """
    Extract the SQLSTATE from a SQLAlchemy/psycopg exception.

    SQLAlchemy wraps driver errors in ``DBAPIError`` and keeps the original
    on ``.orig``; psycopg exposes the code as ``.sqlstate``.
    """
    orig = getattr(exc, "orig", None) or exc
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def serialize_error(exc: BaseException) -> Dict[str, Any]:
    return {
        "class": type(exc).__name__,
        "message": str(exc),
        "backtrace": traceback.format_tb(exc.__traceback__) if exc.__traceback__ else [],
    }
