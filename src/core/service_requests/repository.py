from datetime import datetime
from typing import Optional, Protocol

from src.core.service_requests.models import (
    ActionRecordData,
    ArtisanRefusalRecord,
    BillingEstimateRecord,
    ServiceRequestRecord,
    ServiceRequestStatus,
    ServiceRequestTransitionWrite,
    StatusHistoryRecord,
)


class ServiceRequestRepository(Protocol):
    def get_service_request(self, *, service_request_id: str) -> Optional[ServiceRequestRecord]: ...

    def list_service_requests(
        self,
        *,
        status: Optional[ServiceRequestStatus],
        client_id: Optional[str],
        assigned_artisan_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ServiceRequestRecord], Optional[str]]: ...

    def get_estimate(self, *, estimate_id: str) -> Optional[BillingEstimateRecord]: ...

    def list_estimates(self, *, service_request_id: str) -> list[BillingEstimateRecord]: ...

    def list_lapsed_pending_estimates(self, *, now: datetime) -> list[BillingEstimateRecord]: ...

    def list_status_history(self, *, service_request_id: str) -> list[StatusHistoryRecord]: ...

    def list_actions(self, *, service_request_id: str) -> list[ActionRecordData]: ...

    def list_refusals(self, *, service_request_id: str) -> list[ArtisanRefusalRecord]: ...

    def has_refusal(self, *, service_request_id: str, artisan_id: str) -> bool: ...

    def commit_transition(self, write: ServiceRequestTransitionWrite) -> None:
        """Apply the write atomically.

        Raises ConcurrencyConflictError, writing nothing, when the stored service request
        (or estimate) row_version differs from the expected one, when an insert targets an
        existing id, or when a second pending estimate would exist for the request.
        """
        ...
