"""
Outcome value returned by every materialized view service.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from matviews.services.errors import serialize_error


class ServiceStatus(str, enum.Enum):
    OK = "ok"
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    DELETED = "deleted"
    ERROR = "error"


OK_STATES = frozenset({
    ServiceStatus.OK,
    ServiceStatus.CREATED,
    ServiceStatus.UPDATED,
    ServiceStatus.SKIPPED,
    ServiceStatus.DELETED,
})


@dataclass(frozen=True)
class ServiceResponse:
    """
    Result of one service call.

    Attributes:
        status: Outcome of the operation
        request: Normalized options the service was invoked with
        response: Operation payload (view, sql, row counts, indexes)
        error: ``{class, message, backtrace}``, present iff status is ``error``

    Use ``ServiceResponse.ok`` / ``ServiceResponse.failure`` rather than the
    raw constructor; both routes validate the status/error pairing.
    """
    status: ServiceStatus
    request: Dict[str, Any] = field(default_factory=dict)
    response: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        try:
            status = ServiceStatus(self.status)
        except ValueError:
            raise ValueError(f"Unknown status: {self.status!r}") from None
        object.__setattr__(self, "status", status)

        if status == ServiceStatus.ERROR and not self.error:
            raise ValueError("status=error requires an error")
        if status != ServiceStatus.ERROR and self.error is not None:
            raise ValueError(f"status={status.value} must not carry an error")

        object.__setattr__(self, "request", dict(self.request or {}))
        object.__setattr__(self, "response", dict(self.response or {}))

    @classmethod
    def ok(
        cls,
        status: ServiceStatus,
        request: Optional[Dict[str, Any]] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> "ServiceResponse":
        return cls(status=status, request=request or {}, response=response or {})

    @classmethod
    def failure(
        cls,
        error: BaseException,
        request: Optional[Dict[str, Any]] = None,
        response: Optional[Dict[str, Any]] = None,
    ) -> "ServiceResponse":
        if not isinstance(error, BaseException):
            raise ValueError("error must be an exception instance")
        return cls(
            status=ServiceStatus.ERROR,
            request=request or {},
            response=response or {},
            error=serialize_error(error),
        )

    @property
    def success(self) -> bool:
        return self.status in OK_STATES

    @property
    def is_error(self) -> bool:
        return self.status == ServiceStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "status": self.status.value,
            "request": dict(self.request),
            "response": dict(self.response),
        }
        if self.error is not None:
            data["error"] = dict(self.error)
        return data
