import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from src.core.service_requests.models import (
    ActionRecordData,
    ArtisanRefusalRecord,
    BillingEstimateRecord,
    ServiceRequestRecord,
    StatusHistoryRecord,
)

SERVICE_REQUEST_COLUMNS = """
    service_request_id,
    client_id,
    assigned_artisan_id,
    status,
    service_type,
    title,
    description,
    estimated_price,
    down_payment_reference,
    created_at,
    updated_at,
    row_version
"""

BILLING_ESTIMATE_COLUMNS = """
    estimate_id,
    service_request_id,
    author_id,
    estimated_price,
    description,
    valid_until,
    status,
    revision_number,
    client_accepted,
    artisan_accepted,
    client_response_date,
    artisan_response_date,
    client_response,
    artisan_rejection_reason,
    rejected_by_artisan_id,
    rejected_at,
    created_at,
    updated_at,
    row_version
"""

STATUS_HISTORY_COLUMNS = """
    history_id,
    service_request_id,
    status,
    recorded_at
"""

ACTION_COLUMNS = """
    action_id,
    service_request_id,
    actor_id,
    actor_type,
    action_type,
    status,
    estimate_id,
    dispute_reason,
    dispute_details,
    completion_notes,
    additional_data_json,
    occurred_at
"""

REFUSAL_COLUMNS = """
    artisan_id,
    service_request_id,
    source,
    refused_at
"""


def service_request_params(record: ServiceRequestRecord) -> tuple[Any, ...]:
    return (
        record.service_request_id,
        record.client_id,
        record.assigned_artisan_id,
        record.status,
        record.service_type,
        record.title,
        record.description,
        _optional_decimal_text(record.estimated_price),
        record.down_payment_reference,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        record.row_version,
    )


def estimate_params(record: BillingEstimateRecord) -> tuple[Any, ...]:
    return (
        record.estimate_id,
        record.service_request_id,
        record.author_id,
        str(record.estimated_price),
        record.description,
        _optional_iso(record.valid_until),
        record.status,
        record.revision_number,
        record.client_accepted,
        record.artisan_accepted,
        _optional_iso(record.client_response_date),
        _optional_iso(record.artisan_response_date),
        record.client_response,
        record.artisan_rejection_reason,
        record.rejected_by_artisan_id,
        _optional_iso(record.rejected_at),
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        record.row_version,
    )


def status_history_params(record: StatusHistoryRecord) -> tuple[Any, ...]:
    return (
        record.history_id,
        record.service_request_id,
        record.status,
        record.recorded_at.isoformat(),
    )


def action_params(record: ActionRecordData) -> tuple[Any, ...]:
    return (
        record.action_id,
        record.service_request_id,
        record.actor_id,
        record.actor_type,
        record.action_type,
        record.status,
        record.estimate_id,
        record.dispute_reason,
        record.dispute_details,
        record.completion_notes,
        json.dumps(record.additional_data, separators=(",", ":"), sort_keys=True),
        record.occurred_at.isoformat(),
    )


def refusal_params(record: ArtisanRefusalRecord) -> tuple[Any, ...]:
    return (
        record.artisan_id,
        record.service_request_id,
        record.source,
        record.refused_at.isoformat(),
    )


def to_service_request(row) -> Optional[ServiceRequestRecord]:
    if row is None:
        return None
    return ServiceRequestRecord(
        service_request_id=row["service_request_id"],
        client_id=row["client_id"],
        assigned_artisan_id=row["assigned_artisan_id"],
        status=row["status"],
        service_type=row["service_type"],
        title=row["title"],
        description=row["description"],
        estimated_price=_optional_decimal(row["estimated_price"]),
        down_payment_reference=row["down_payment_reference"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        row_version=int(row["row_version"]),
    )


def to_estimate(row) -> Optional[BillingEstimateRecord]:
    if row is None:
        return None
    return BillingEstimateRecord(
        estimate_id=row["estimate_id"],
        service_request_id=row["service_request_id"],
        author_id=row["author_id"],
        estimated_price=Decimal(row["estimated_price"]),
        description=row["description"],
        valid_until=_optional_datetime(row["valid_until"]),
        status=row["status"],
        revision_number=int(row["revision_number"]),
        client_accepted=_optional_bool(row["client_accepted"]),
        artisan_accepted=_optional_bool(row["artisan_accepted"]),
        client_response_date=_optional_datetime(row["client_response_date"]),
        artisan_response_date=_optional_datetime(row["artisan_response_date"]),
        client_response=row["client_response"],
        artisan_rejection_reason=row["artisan_rejection_reason"],
        rejected_by_artisan_id=row["rejected_by_artisan_id"],
        rejected_at=_optional_datetime(row["rejected_at"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        row_version=int(row["row_version"]),
    )


def to_status_history(row) -> StatusHistoryRecord:
    return StatusHistoryRecord(
        history_id=row["history_id"],
        service_request_id=row["service_request_id"],
        status=row["status"],
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
    )


def to_action(row) -> ActionRecordData:
    return ActionRecordData(
        action_id=row["action_id"],
        service_request_id=row["service_request_id"],
        actor_id=row["actor_id"],
        actor_type=row["actor_type"],
        action_type=row["action_type"],
        status=row["status"],
        estimate_id=row["estimate_id"],
        dispute_reason=row["dispute_reason"],
        dispute_details=row["dispute_details"],
        completion_notes=row["completion_notes"],
        additional_data=json.loads(row["additional_data_json"]),
        occurred_at=datetime.fromisoformat(row["occurred_at"]),
    )


def to_refusal(row) -> ArtisanRefusalRecord:
    return ArtisanRefusalRecord(
        artisan_id=row["artisan_id"],
        service_request_id=row["service_request_id"],
        source=row["source"],
        refused_at=datetime.fromisoformat(row["refused_at"]),
    )


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _optional_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _optional_decimal(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(value)


def _optional_decimal_text(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _optional_bool(value) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)
