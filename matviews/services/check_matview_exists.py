from matviews.services.base_service import BaseService
from matviews.services.service_response import ServiceResponse, ServiceStatus


class CheckMatviewExists(BaseService):
    """Report whether the definition's view exists in the resolved schema."""

    operation_name = "check_matview_exists"

    def assign_request(self) -> None:
        self.request = {}

    def prepare(self) -> None:
        pass

    def execute(self) -> ServiceResponse:
        self.response = {"view": self.view_label, "exists": self.view_exists()}
        return self.ok(ServiceStatus.OK)
