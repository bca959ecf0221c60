import uuid
from datetime import datetime
from typing import Any, Optional

from src.core.service_requests.models import (
    ActionActorType,
    ActionDisputeReason,
    ActionEntry,
    ActionRecordData,
    ActionType,
    ServiceRequestStatus,
    StatusHistoryEntry,
    StatusHistoryRecord,
)


def new_status_history(
    *, service_request_id: str, status: ServiceRequestStatus, recorded_at: datetime
) -> StatusHistoryRecord:
    return StatusHistoryRecord(
        history_id=f"sh_{uuid.uuid4().hex[:12]}",
        service_request_id=service_request_id,
        status=status,
        recorded_at=recorded_at,
    )


def new_action(
    *,
    service_request_id: str,
    actor_id: str,
    actor_type: ActionActorType,
    action_type: ActionType,
    status: ServiceRequestStatus,
    occurred_at: datetime,
    estimate_id: Optional[str] = None,
    dispute_reason: Optional[ActionDisputeReason] = None,
    dispute_details: Optional[str] = None,
    completion_notes: Optional[str] = None,
    additional_data: Optional[dict[str, Any]] = None,
) -> ActionRecordData:
    return ActionRecordData(
        action_id=f"act_{uuid.uuid4().hex[:12]}",
        service_request_id=service_request_id,
        actor_id=actor_id,
        actor_type=actor_type,
        action_type=action_type,
        status=status,
        estimate_id=estimate_id,
        dispute_reason=dispute_reason,
        dispute_details=dispute_details,
        completion_notes=completion_notes,
        additional_data=additional_data or {},
        occurred_at=occurred_at,
    )


def project_status(history: list[StatusHistoryRecord]) -> Optional[ServiceRequestStatus]:
    """Current status as the most recent history entry; None for an empty history."""
    if not history:
        return None
    return history[-1].status


def has_passed_through(history: list[StatusHistoryRecord], status: ServiceRequestStatus) -> bool:
    return any(entry.status == status for entry in history)


def visited_statuses(history: list[StatusHistoryRecord]) -> list[ServiceRequestStatus]:
    seen: list[ServiceRequestStatus] = []
    for entry in history:
        if entry.status not in seen:
            seen.append(entry.status)
    return seen


def to_history_entry(record: StatusHistoryRecord) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        history_id=record.history_id,
        service_request_id=record.service_request_id,
        status=record.status,
        recorded_at=record.recorded_at.isoformat(),
    )


def to_action_entry(record: ActionRecordData) -> ActionEntry:
    return ActionEntry(
        action_id=record.action_id,
        service_request_id=record.service_request_id,
        actor_id=record.actor_id,
        actor_type=record.actor_type,
        action_type=record.action_type,
        status=record.status,
        estimate_id=record.estimate_id,
        dispute_reason=record.dispute_reason,
        dispute_details=record.dispute_details,
        completion_notes=record.completion_notes,
        additional_data=record.additional_data,
        occurred_at=record.occurred_at.isoformat(),
    )
