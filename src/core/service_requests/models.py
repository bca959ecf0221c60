from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import AwareDatetime, BaseModel, Field

ServiceRequestStatus = Literal[
    "AWAITING_PAYMENT",
    "AWAITING_ESTIMATE",
    "AWAITING_ESTIMATE_ACCEPTATION",
    "AWAITING_ESTIMATE_REVISION",
    "AWAITING_DUAL_ACCEPTANCE",
    "AWAITING_ASSIGNATION",
    "IN_PROGRESS",
    "CLIENT_VALIDATED",
    "ARTISAN_VALIDATED",
    "COMPLETED",
    "DISPUTED_BY_CLIENT",
    "DISPUTED_BY_ARTISAN",
    "DISPUTED_BY_BOTH",
    "RESOLVED",
    "CANCELLED",
]

BillingEstimateStatus = Literal["pending", "accepted", "rejected", "expired"]
ActorRole = Literal["client", "professional", "admin"]
ActionActorType = Literal["client", "professional", "admin", "system"]
ValidatingParty = Literal["client", "professional"]

ActionType = Literal[
    "down_payment_confirmation",
    "estimate_creation",
    "estimate_acceptance",
    "estimate_refusal",
    "estimate_rejection",
    "estimate_expiry",
    "revision_creation",
    "revision_acceptance",
    "revision_refusal",
    "assignment_acceptance",
    "assignment_refusal",
    "mission_start",
    "validation",
    "dispute",
    "dispute_resolution",
    "cancellation",
]

DisputeReason = Literal[
    "incomplete",
    "quality",
    "damage",
    "different",
    "client_no_show",
    "payment_issue",
    "scope_disagreement",
    "safety_concern",
    "client_behavior",
    "additional_work_requested",
    "access_denied",
    "price_disagreement",
    "other",
]

# Action entries also record the reason attached to artisan estimate rejections.
ActionDisputeReason = Literal[DisputeReason, "workload_exceeded"]

EstimateDecision = Literal["ACCEPT", "REJECT"]
RevisionDecision = Literal["ACCEPT", "REFUSE"]
ArtisanRefusalSource = Literal["ASSIGNMENT", "REVISION"]


class Actor(BaseModel):
    actor_id: str = Field(description="Authenticated actor identifier.", examples=["usr_client_01"])
    role: ActorRole = Field(description="Role the actor is acting under.", examples=["client"])


class ServiceRequestCreateRequest(BaseModel):
    service_type: str = Field(
        description="Requested service category.",
        examples=["plumbing"],
    )
    title: Optional[str] = Field(
        default=None,
        description="Optional short title shown to participants.",
        examples=["Leaking kitchen tap"],
    )
    description: Optional[str] = Field(
        default=None,
        description="Optional free-text description of the job.",
        examples=["Tap leaks continuously since yesterday, washer probably worn."],
    )


class DownPaymentConfirmationRequest(BaseModel):
    payment_reference: str = Field(
        description="Reference of the captured down payment reported by the payment provider.",
        examples=["pi_3PaymentCaptured01"],
    )


class EstimateCreateRequest(BaseModel):
    estimated_price: Decimal = Field(
        gt=0,
        description="Proposed price for the job.",
        examples=["180.00"],
    )
    description: str = Field(
        description="Scope and pricing breakdown shown to the parties.",
        examples=["Replace mixer tap cartridge, labour and parts included."],
    )
    valid_until: Optional[AwareDatetime] = Field(
        default=None,
        description="Optional ISO8601 expiry timestamp of the offer; must carry a UTC offset.",
        examples=["2026-03-01T18:00:00+00:00"],
    )


class EstimateResponseRequest(BaseModel):
    decision: EstimateDecision = Field(
        description="Client decision on the initial estimate.",
        examples=["ACCEPT"],
    )
    response: Optional[str] = Field(
        default=None,
        description="Client free-text response. Required when rejecting.",
        examples=["Price is fine, please go ahead."],
    )


class ArtisanEstimateRejectionRequest(BaseModel):
    reason: str = Field(
        description="Substantive justification (at least 50 characters) for reopening pricing.",
        examples=[
            "On site the pipe work behind the wall is corroded and needs full replacement."
        ],
    )


class RevisionResponseRequest(BaseModel):
    decision: RevisionDecision = Field(
        description="Party decision on a revised estimate.",
        examples=["ACCEPT"],
    )
    response: Optional[str] = Field(
        default=None,
        description="Optional free-text response recorded with the decision.",
        examples=["Agreed with the revised scope."],
    )


class ValidationRequest(BaseModel):
    notes: Optional[str] = Field(
        default=None,
        description="Completion notes. Artisans must provide at least 20 characters.",
        examples=["Cartridge replaced, tested for leaks over ten minutes."],
    )
    photos: List[str] = Field(
        default_factory=list,
        description="Opaque photo references. Artisans must provide at least one.",
        examples=[["uploads/sr_01/after.jpg"]],
    )


class DisputeRequest(BaseModel):
    reason: DisputeReason = Field(description="Dispute classification.", examples=["quality"])
    details: str = Field(
        description="Dispute details (at least 10 characters).",
        examples=["The tap still drips after the intervention."],
    )
    photos: List[str] = Field(
        default_factory=list,
        description="Optional opaque photo references supporting the dispute.",
        examples=[["uploads/sr_01/drip.jpg"]],
    )


class DisputeResolutionRequest(BaseModel):
    resolution_notes: Optional[str] = Field(
        default=None,
        description="Optional admin resolution notes.",
        examples=["Artisan agreed to come back free of charge."],
    )


class CancellationRequest(BaseModel):
    reason: str = Field(
        description="Admin cancellation reason.",
        examples=["Client no longer reachable."],
    )


class ServiceRequestSummary(BaseModel):
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    client_id: str = Field(description="Owning client identifier.", examples=["usr_client_01"])
    assigned_artisan_id: Optional[str] = Field(
        default=None,
        description="Assigned artisan identifier, null until assignment.",
        examples=["usr_artisan_07"],
    )
    status: ServiceRequestStatus = Field(
        description="Current lifecycle status.", examples=["AWAITING_ESTIMATE"]
    )
    service_type: str = Field(description="Requested service category.", examples=["plumbing"])
    title: Optional[str] = Field(default=None, description="Short title.", examples=["Leaking tap"])
    estimated_price: Optional[Decimal] = Field(
        default=None,
        description="Price cached from the currently accepted estimate.",
        examples=["180.00"],
    )
    created_at: str = Field(
        description="UTC ISO8601 creation timestamp.", examples=["2026-02-19T12:00:00+00:00"]
    )
    updated_at: str = Field(
        description="UTC ISO8601 timestamp of the latest write.",
        examples=["2026-02-19T12:05:00+00:00"],
    )
    version: int = Field(description="Optimistic concurrency version.", examples=[3])


class BillingEstimateDetail(BaseModel):
    estimate_id: str = Field(description="Billing estimate identifier.", examples=["est_001"])
    service_request_id: str = Field(description="Owning service request.", examples=["sr_001"])
    author_id: str = Field(description="Admin who authored the estimate.", examples=["usr_admin"])
    estimated_price: Decimal = Field(description="Proposed price.", examples=["180.00"])
    description: str = Field(description="Scope description.", examples=["Replace cartridge."])
    valid_until: Optional[str] = Field(
        default=None,
        description="UTC ISO8601 offer expiry timestamp.",
        examples=["2026-03-01T18:00:00+00:00"],
    )
    status: BillingEstimateStatus = Field(description="Estimate status.", examples=["pending"])
    revision_number: int = Field(description="1 for the original, +1 per revision.", examples=[1])
    client_accepted: Optional[bool] = Field(default=None, description="Client acceptance flag.")
    artisan_accepted: Optional[bool] = Field(default=None, description="Artisan acceptance flag.")
    client_response_date: Optional[str] = Field(default=None, description="Client response time.")
    artisan_response_date: Optional[str] = Field(
        default=None, description="Artisan response time."
    )
    client_response: Optional[str] = Field(default=None, description="Client free-text response.")
    artisan_rejection_reason: Optional[str] = Field(
        default=None, description="Artisan justification when rejecting an accepted estimate."
    )
    rejected_by_artisan_id: Optional[str] = Field(
        default=None, description="Artisan who rejected the accepted estimate."
    )
    rejected_at: Optional[str] = Field(default=None, description="Artisan rejection time.")
    created_at: str = Field(description="UTC ISO8601 creation timestamp.")


class StatusHistoryEntry(BaseModel):
    history_id: str = Field(description="History entry identifier.", examples=["sh_001"])
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    status: ServiceRequestStatus = Field(description="Status entered.", examples=["IN_PROGRESS"])
    recorded_at: str = Field(
        description="UTC ISO8601 timestamp.", examples=["2026-02-19T12:05:00+00:00"]
    )


class ActionEntry(BaseModel):
    action_id: str = Field(description="Action record identifier.", examples=["act_001"])
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    actor_id: str = Field(description="Acting party.", examples=["usr_client_01"])
    actor_type: ActionActorType = Field(description="Acting party type.", examples=["client"])
    action_type: ActionType = Field(description="Actor intent.", examples=["validation"])
    status: ServiceRequestStatus = Field(
        description="Service request status after the action.", examples=["CLIENT_VALIDATED"]
    )
    estimate_id: Optional[str] = Field(default=None, description="Related billing estimate.")
    dispute_reason: Optional[ActionDisputeReason] = Field(
        default=None, description="Dispute reason."
    )
    dispute_details: Optional[str] = Field(default=None, description="Dispute details.")
    completion_notes: Optional[str] = Field(default=None, description="Free-text notes.")
    additional_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque evidence payload such as photo references.",
        examples=[{"photos": ["uploads/sr_01/after.jpg"]}],
    )
    occurred_at: str = Field(description="UTC ISO8601 timestamp.")


class ArtisanRefusalEntry(BaseModel):
    artisan_id: str = Field(description="Refusing artisan.", examples=["usr_artisan_07"])
    service_request_id: str = Field(description="Refused service request.", examples=["sr_001"])
    source: ArtisanRefusalSource = Field(description="What was refused.", examples=["ASSIGNMENT"])
    refused_at: str = Field(description="UTC ISO8601 timestamp.")


class ServiceRequestTransitionResponse(BaseModel):
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    previous_status: Optional[ServiceRequestStatus] = Field(
        default=None,
        description="Status before the operation, null on creation.",
        examples=["AWAITING_ESTIMATE_ACCEPTATION"],
    )
    status: ServiceRequestStatus = Field(
        description="Status after the operation.", examples=["AWAITING_ASSIGNATION"]
    )
    estimate_id: Optional[str] = Field(
        default=None, description="Billing estimate touched by the operation.", examples=["est_001"]
    )
    status_history_id: Optional[str] = Field(
        default=None,
        description="Status history entry written, null when status did not change.",
        examples=["sh_001"],
    )
    action_ids: List[str] = Field(
        default_factory=list, description="Action records written.", examples=[["act_001"]]
    )
    refusal_recorded: bool = Field(
        default=False, description="Whether an artisan refusal was recorded.", examples=[False]
    )


class ServiceRequestDetailResponse(BaseModel):
    service_request: ServiceRequestSummary = Field(description="Service request summary.")
    current_estimate: Optional[BillingEstimateDetail] = Field(
        default=None, description="Most recent billing estimate, if any."
    )


class ServiceRequestListResponse(BaseModel):
    items: List[ServiceRequestSummary] = Field(description="Page of service requests.")
    next_cursor: Optional[str] = Field(
        default=None, description="Cursor for the next page.", examples=["sr_001"]
    )


class DisputedServiceRequestEntry(BaseModel):
    service_request: ServiceRequestSummary = Field(description="Disputed service request.")
    latest_dispute: Optional[ActionEntry] = Field(
        default=None, description="Most recent dispute action recorded on the request."
    )


class DisputeQueueResponse(BaseModel):
    items: List[DisputedServiceRequestEntry] = Field(
        description="Disputed requests, most recently updated first."
    )
    count: int = Field(description="Number of disputed requests.", examples=[2])


class BillingEstimateListResponse(BaseModel):
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    estimates: List[BillingEstimateDetail] = Field(description="Estimates by revision number.")


class ServiceRequestTimelineResponse(BaseModel):
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    status: ServiceRequestStatus = Field(description="Cached current status.")
    projected_status: Optional[ServiceRequestStatus] = Field(
        default=None, description="Status of the most recent history entry."
    )
    visited_statuses: List[ServiceRequestStatus] = Field(
        description="Distinct statuses the request has passed through, in first-visit order."
    )
    status_history: List[StatusHistoryEntry] = Field(description="Append-only status history.")
    actions: List[ActionEntry] = Field(description="Append-only action records.")


class ArtisanRefusalListResponse(BaseModel):
    service_request_id: str = Field(description="Service request identifier.", examples=["sr_001"])
    refusals: List[ArtisanRefusalEntry] = Field(description="Recorded artisan refusals.")


class EstimateExpirySweepResponse(BaseModel):
    swept_at: str = Field(description="UTC ISO8601 sweep timestamp.")
    expired_estimate_ids: List[str] = Field(description="Estimates marked expired by the sweep.")
    skipped_estimate_ids: List[str] = Field(
        default_factory=list,
        description="Lapsed estimates left untouched because a concurrent write won.",
    )


class ServiceRequestSupportabilityConfigResponse(BaseModel):
    store_backend: str = Field(description="Configured store backend.", examples=["POSTGRES"])
    backend_ready: bool = Field(description="Whether the backend initialized.", examples=[True])
    backend_init_error: Optional[str] = Field(
        default=None,
        description="Stable initialization error code when the backend is not ready.",
        examples=["SERVICE_REQUEST_POSTGRES_DSN_REQUIRED"],
    )
    require_down_payment: bool = Field(
        description="Whether new requests start in AWAITING_PAYMENT.", examples=[False]
    )
    transition_max_attempts: int = Field(
        description="Optimistic write attempts per operation.", examples=[3]
    )
    notifications_enabled: bool = Field(
        description="Whether transition notices are published.", examples=[True]
    )


class ServiceRequestRecord(BaseModel):
    service_request_id: str
    client_id: str
    assigned_artisan_id: Optional[str] = None
    status: ServiceRequestStatus
    service_type: str
    title: Optional[str] = None
    description: Optional[str] = None
    estimated_price: Optional[Decimal] = None
    down_payment_reference: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    row_version: int = 1


class BillingEstimateRecord(BaseModel):
    estimate_id: str
    service_request_id: str
    author_id: str
    estimated_price: Decimal
    description: str
    valid_until: Optional[datetime] = None
    status: BillingEstimateStatus
    revision_number: int
    client_accepted: Optional[bool] = None
    artisan_accepted: Optional[bool] = None
    client_response_date: Optional[datetime] = None
    artisan_response_date: Optional[datetime] = None
    client_response: Optional[str] = None
    artisan_rejection_reason: Optional[str] = None
    rejected_by_artisan_id: Optional[str] = None
    rejected_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    row_version: int = 1


class StatusHistoryRecord(BaseModel):
    history_id: str
    service_request_id: str
    status: ServiceRequestStatus
    recorded_at: datetime


class ActionRecordData(BaseModel):
    action_id: str
    service_request_id: str
    actor_id: str
    actor_type: ActionActorType
    action_type: ActionType
    status: ServiceRequestStatus
    estimate_id: Optional[str] = None
    dispute_reason: Optional[ActionDisputeReason] = None
    dispute_details: Optional[str] = None
    completion_notes: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime


class ArtisanRefusalRecord(BaseModel):
    artisan_id: str
    service_request_id: str
    source: ArtisanRefusalSource
    refused_at: datetime


class ServiceRequestTransitionWrite(BaseModel):
    service_request: ServiceRequestRecord
    expected_row_version: Optional[int] = None
    estimate: Optional[BillingEstimateRecord] = None
    expected_estimate_row_version: Optional[int] = None
    status_history: Optional[StatusHistoryRecord] = None
    actions: List[ActionRecordData] = Field(default_factory=list)
    refusal: Optional[ArtisanRefusalRecord] = None
