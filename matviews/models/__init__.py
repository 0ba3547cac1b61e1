from matviews.models.mat_views import (
    MatViewDefinition,
    MatViewRun,
    RefreshStrategy,
    RunOperation,
    RunStatus,
    InvalidRunTransition,
)

__all__ = [
    "MatViewDefinition",
    "MatViewRun",
    "RefreshStrategy",
    "RunOperation",
    "RunStatus",
    "InvalidRunTransition",
]
