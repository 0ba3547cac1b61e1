from matviews.services.base_service import BaseService, RowCountStrategy, UNKNOWN_ROW_COUNT
from matviews.services.check_matview_exists import CheckMatviewExists
from matviews.services.concurrent_refresh import ConcurrentRefresh
from matviews.services.create_view import CreateView
from matviews.services.delete_view import DeleteView
from matviews.services.regular_refresh import RegularRefresh
from matviews.services.service_response import ServiceResponse, ServiceStatus
from matviews.services.swap_refresh import SwapRefresh

REFRESH_SERVICES = {
    "regular": RegularRefresh,
    "concurrent": ConcurrentRefresh,
    "swap": SwapRefresh,
}


def refresh_service_for(strategy) -> type:
    """Service class for a definition's refresh strategy (regular by default)."""
    key = str(getattr(strategy, "value", strategy) or "regular")
    return REFRESH_SERVICES.get(key, RegularRefresh)


__all__ = [
    "BaseService",
    "CheckMatviewExists",
    "ConcurrentRefresh",
    "CreateView",
    "DeleteView",
    "REFRESH_SERVICES",
    "RegularRefresh",
    "RowCountStrategy",
    "ServiceResponse",
    "ServiceStatus",
    "SwapRefresh",
    "UNKNOWN_ROW_COUNT",
    "refresh_service_for",
]
