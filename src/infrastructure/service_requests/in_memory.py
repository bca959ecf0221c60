from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.service_requests.errors import ConcurrencyConflictError
from src.core.service_requests.models import (
    ActionRecordData,
    ArtisanRefusalRecord,
    BillingEstimateRecord,
    ServiceRequestRecord,
    ServiceRequestStatus,
    ServiceRequestTransitionWrite,
    StatusHistoryRecord,
)
from src.core.service_requests.repository import ServiceRequestRepository


class InMemoryServiceRequestRepository(ServiceRequestRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._service_requests: dict[str, ServiceRequestRecord] = {}
        self._estimates: dict[str, BillingEstimateRecord] = {}
        self._estimate_ids: dict[str, list[str]] = {}
        self._history: dict[str, list[StatusHistoryRecord]] = {}
        self._actions: dict[str, list[ActionRecordData]] = {}
        self._refusals: dict[str, list[ArtisanRefusalRecord]] = {}

    def get_service_request(self, *, service_request_id: str) -> Optional[ServiceRequestRecord]:
        with self._lock:
            service_request = self._service_requests.get(service_request_id)
            return deepcopy(service_request) if service_request is not None else None

    def list_service_requests(
        self,
        *,
        status: Optional[ServiceRequestStatus],
        client_id: Optional[str],
        assigned_artisan_id: Optional[str],
        limit: int,
        cursor: Optional[str],
    ) -> tuple[list[ServiceRequestRecord], Optional[str]]:
        with self._lock:
            rows = list(self._service_requests.values())

        rows = sorted(rows, key=lambda x: (x.created_at, x.service_request_id), reverse=True)

        if status is not None:
            rows = [row for row in rows if row.status == status]
        if client_id is not None:
            rows = [row for row in rows if row.client_id == client_id]
        if assigned_artisan_id is not None:
            rows = [row for row in rows if row.assigned_artisan_id == assigned_artisan_id]

        if cursor:
            row_ids = [row.service_request_id for row in rows]
            if cursor in row_ids:
                start = row_ids.index(cursor) + 1
                rows = rows[start:]

        page = rows[:limit]
        next_cursor = page[-1].service_request_id if len(rows) > limit else None
        return [deepcopy(row) for row in page], next_cursor

    def get_estimate(self, *, estimate_id: str) -> Optional[BillingEstimateRecord]:
        with self._lock:
            estimate = self._estimates.get(estimate_id)
            return deepcopy(estimate) if estimate is not None else None

    def list_estimates(self, *, service_request_id: str) -> list[BillingEstimateRecord]:
        with self._lock:
            return [
                deepcopy(self._estimates[estimate_id])
                for estimate_id in self._estimate_ids.get(service_request_id, [])
            ]

    def list_lapsed_pending_estimates(self, *, now: datetime) -> list[BillingEstimateRecord]:
        with self._lock:
            rows = [
                estimate
                for estimate in self._estimates.values()
                if estimate.status == "pending"
                and estimate.valid_until is not None
                and estimate.valid_until < now
            ]
        rows = sorted(rows, key=lambda x: (x.valid_until, x.estimate_id))
        return [deepcopy(row) for row in rows]

    def list_status_history(self, *, service_request_id: str) -> list[StatusHistoryRecord]:
        with self._lock:
            return deepcopy(self._history.get(service_request_id, []))

    def list_actions(self, *, service_request_id: str) -> list[ActionRecordData]:
        with self._lock:
            return deepcopy(self._actions.get(service_request_id, []))

    def list_refusals(self, *, service_request_id: str) -> list[ArtisanRefusalRecord]:
        with self._lock:
            return deepcopy(self._refusals.get(service_request_id, []))

    def has_refusal(self, *, service_request_id: str, artisan_id: str) -> bool:
        with self._lock:
            return any(
                refusal.artisan_id == artisan_id
                for refusal in self._refusals.get(service_request_id, [])
            )

    def commit_transition(self, write: ServiceRequestTransitionWrite) -> None:
        service_request = write.service_request
        service_request_id = service_request.service_request_id
        with self._lock:
            current = self._service_requests.get(service_request_id)
            if write.expected_row_version is None:
                if current is not None:
                    raise ConcurrencyConflictError(service_request_id)
            elif current is None or current.row_version != write.expected_row_version:
                raise ConcurrencyConflictError(service_request_id)

            estimate = write.estimate
            if estimate is not None:
                stored = self._estimates.get(estimate.estimate_id)
                if write.expected_estimate_row_version is None:
                    if stored is not None:
                        raise ConcurrencyConflictError(estimate.estimate_id)
                elif stored is None or stored.row_version != write.expected_estimate_row_version:
                    raise ConcurrencyConflictError(estimate.estimate_id)
                if estimate.status == "pending" and any(
                    self._estimates[other_id].status == "pending"
                    for other_id in self._estimate_ids.get(service_request_id, [])
                    if other_id != estimate.estimate_id
                ):
                    raise ConcurrencyConflictError(estimate.estimate_id)

            self._service_requests[service_request_id] = deepcopy(service_request)
            if estimate is not None:
                if estimate.estimate_id not in self._estimates:
                    self._estimate_ids.setdefault(service_request_id, []).append(
                        estimate.estimate_id
                    )
                self._estimates[estimate.estimate_id] = deepcopy(estimate)
            if write.status_history is not None:
                self._history.setdefault(service_request_id, []).append(
                    deepcopy(write.status_history)
                )
            self._actions.setdefault(service_request_id, []).extend(deepcopy(write.actions))
            refusal = write.refusal
            if refusal is not None and not any(
                existing.artisan_id == refusal.artisan_id
                for existing in self._refusals.get(service_request_id, [])
            ):
                self._refusals.setdefault(service_request_id, []).append(deepcopy(refusal))
