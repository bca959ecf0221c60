import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from src.core.service_requests.audit import (
    new_action,
    new_status_history,
    project_status,
    to_action_entry,
    to_history_entry,
    visited_statuses,
)
from src.core.service_requests.errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidStateError,
    PersistenceError,
    ServiceRequestLifecycleError,
    ServiceRequestNotFoundError,
    ValidationError,
)
from src.core.service_requests.models import (
    ActionActorType,
    ActionType,
    Actor,
    ActorRole,
    ArtisanEstimateRejectionRequest,
    ArtisanRefusalEntry,
    ArtisanRefusalListResponse,
    ArtisanRefusalRecord,
    ArtisanRefusalSource,
    BillingEstimateDetail,
    BillingEstimateListResponse,
    BillingEstimateRecord,
    CancellationRequest,
    DisputedServiceRequestEntry,
    DisputeQueueResponse,
    DisputeRequest,
    DisputeResolutionRequest,
    DownPaymentConfirmationRequest,
    EstimateCreateRequest,
    EstimateExpirySweepResponse,
    EstimateResponseRequest,
    RevisionResponseRequest,
    ServiceRequestCreateRequest,
    ServiceRequestDetailResponse,
    ServiceRequestListResponse,
    ServiceRequestRecord,
    ServiceRequestStatus,
    ServiceRequestSummary,
    ServiceRequestTimelineResponse,
    ServiceRequestTransitionResponse,
    ServiceRequestTransitionWrite,
    ValidatingParty,
    ValidationRequest,
)
from src.core.service_requests.notifications import (
    NotificationPublisher,
    ServiceRequestTransitionNotice,
    publish_safely,
)
from src.core.service_requests.repository import ServiceRequestRepository
from src.core.service_requests.state_machine import (
    DISPUTED_STATUSES,
    OPERATION_PRECONDITIONS,
    is_estimate_lapsed,
    require_precondition,
    resolve_dispute_status,
    resolve_estimate_expiry_status,
    resolve_revision_outcome,
    resolve_validation_status,
)

logger = logging.getLogger(__name__)

ARTISAN_REJECTION_REASON_MIN_LENGTH = 50
ARTISAN_VALIDATION_NOTES_MIN_LENGTH = 20
DISPUTE_DETAILS_MIN_LENGTH = 10
DISPUTE_QUEUE_PAGE_SIZE = 100
DEFAULT_RESOLUTION_NOTES = "Dispute resolved by admin"
ARTISAN_REJECTION_DISPUTE_REASON = "workload_exceeded"
SYSTEM_ACTOR_ID = "system"
PAYMENT_ACTOR_ID = "payment-collaborator"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Transition:
    write: ServiceRequestTransitionWrite
    previous_status: Optional[ServiceRequestStatus]
    actor_id: str
    actor_type: ActionActorType
    rejection: Optional[ServiceRequestLifecycleError] = None


_Decide = Callable[[ServiceRequestRecord, datetime], Optional[_Transition]]


class ServiceRequestWorkflowService:
    def __init__(
        self,
        *,
        repository: ServiceRequestRepository,
        notification_publisher: Optional[NotificationPublisher] = None,
        require_down_payment: bool = False,
        transition_max_attempts: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._notification_publisher = notification_publisher
        self._require_down_payment = require_down_payment
        self._transition_max_attempts = max(1, transition_max_attempts)
        self._clock = clock or _utc_now

    def create_service_request(
        self, *, actor: Actor, payload: ServiceRequestCreateRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "client")
        service_type = payload.service_type.strip()
        if not service_type:
            raise ValidationError("SERVICE_TYPE_REQUIRED", "service_type must not be empty")

        now = self._clock()
        status: ServiceRequestStatus = (
            "AWAITING_PAYMENT" if self._require_down_payment else "AWAITING_ESTIMATE"
        )
        service_request = ServiceRequestRecord(
            service_request_id=f"sr_{uuid.uuid4().hex[:12]}",
            client_id=actor.actor_id,
            status=status,
            service_type=service_type,
            title=payload.title,
            description=payload.description,
            created_at=now,
            updated_at=now,
            row_version=1,
        )
        transition = _Transition(
            write=ServiceRequestTransitionWrite(
                service_request=service_request,
                expected_row_version=None,
                status_history=new_status_history(
                    service_request_id=service_request.service_request_id,
                    status=status,
                    recorded_at=now,
                ),
            ),
            previous_status=None,
            actor_id=actor.actor_id,
            actor_type=actor.role,
        )
        try:
            self._repository.commit_transition(transition.write)
        except ConcurrencyConflictError as exc:
            raise PersistenceError("SERVICE_REQUEST_ID_COLLISION", "retry the creation") from exc
        self._after_commit(transition)
        return self._to_transition_response(transition)

    def confirm_down_payment(
        self,
        *,
        actor: Actor,
        service_request_id: str,
        payload: DownPaymentConfirmationRequest,
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "admin")
        payment_reference = payload.payment_reference.strip()
        if not payment_reference:
            raise ValidationError("PAYMENT_REFERENCE_REQUIRED", "payment_reference is required")

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("CONFIRM_DOWN_PAYMENT", service_request.status)
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request,
                    now,
                    status="AWAITING_ESTIMATE",
                    down_payment_reference=payment_reference,
                ),
                now=now,
                actor_id=PAYMENT_ACTOR_ID,
                actor_type="system",
                action_type="down_payment_confirmation",
                additional_data={"payment_reference": payment_reference},
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def create_initial_estimate(
        self, *, actor: Actor, service_request_id: str, payload: EstimateCreateRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "admin")
        description = self._validate_estimate_payload(payload)

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("CREATE_INITIAL_ESTIMATE", service_request.status)
            self._require_no_pending_estimate(service_request)
            estimate = BillingEstimateRecord(
                estimate_id=f"est_{uuid.uuid4().hex[:12]}",
                service_request_id=service_request.service_request_id,
                author_id=actor.actor_id,
                estimated_price=payload.estimated_price,
                description=description,
                valid_until=payload.valid_until,
                status="pending",
                revision_number=1,
                created_at=now,
                updated_at=now,
            )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request, now, status="AWAITING_ESTIMATE_ACCEPTATION"
                ),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="estimate_creation",
                next_estimate=estimate,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def respond_to_estimate(
        self, *, actor: Actor, estimate_id: str, payload: EstimateResponseRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "client")
        response_text = (payload.response or "").strip() or None
        if payload.decision == "REJECT" and response_text is None:
            raise ValidationError(
                "CLIENT_RESPONSE_REQUIRED", "a response is required when rejecting an estimate"
            )
        service_request_id = self._load_estimate(estimate_id).service_request_id
        self._require_owner(actor, self._load_service_request(service_request_id))

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            estimate = self._load_estimate(estimate_id)
            if is_estimate_lapsed(estimate, now=now):
                return self._expiry_transition(service_request, estimate, now, reject=True)
            require_precondition("RESPOND_TO_ESTIMATE", service_request.status)
            if estimate.revision_number > 1:
                raise InvalidStateError(
                    "REVISION_REQUIRES_DUAL_ACCEPTANCE",
                    "revised estimates are answered through the revision response",
                )
            self._require_current_pending(estimate)

            if payload.decision == "ACCEPT":
                next_estimate = self._next_estimate(
                    estimate,
                    now,
                    status="accepted",
                    client_accepted=True,
                    client_response_date=now,
                    client_response=response_text,
                )
                next_request = self._next_request(
                    service_request,
                    now,
                    status="AWAITING_ASSIGNATION",
                    estimated_price=estimate.estimated_price,
                )
                action_type: ActionType = "estimate_acceptance"
            else:
                next_estimate = self._next_estimate(
                    estimate,
                    now,
                    status="rejected",
                    client_accepted=False,
                    client_response_date=now,
                    client_response=response_text,
                )
                next_request = self._next_request(
                    service_request, now, status="CANCELLED", assigned_artisan_id=None
                )
                action_type = "estimate_refusal"
            return self._transition(
                service_request=service_request,
                next_request=next_request,
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type=action_type,
                estimate=estimate,
                next_estimate=next_estimate,
                completion_notes=response_text,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def artisan_reject_estimate(
        self, *, actor: Actor, estimate_id: str, payload: ArtisanEstimateRejectionRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "professional")
        service_request_id = self._load_estimate(estimate_id).service_request_id
        self._require_assigned_artisan(actor, self._load_service_request(service_request_id))
        reason = payload.reason.strip()
        if len(reason) < ARTISAN_REJECTION_REASON_MIN_LENGTH:
            raise ValidationError(
                "REJECTION_REASON_TOO_SHORT",
                f"reason must be at least {ARTISAN_REJECTION_REASON_MIN_LENGTH} characters",
            )

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            self._require_assigned_artisan(actor, service_request)
            require_precondition("ARTISAN_REJECT_ESTIMATE", service_request.status)
            estimate = self._load_estimate(estimate_id)
            if estimate.rejected_by_artisan_id is not None or estimate.status == "rejected":
                raise InvalidStateError("ESTIMATE_ALREADY_REJECTED", "estimate already rejected")
            if estimate.status != "accepted":
                raise InvalidStateError("ESTIMATE_NOT_ACCEPTED", f"estimate is {estimate.status}")
            latest = self._latest_estimate(service_request.service_request_id)
            if latest is None or latest.estimate_id != estimate.estimate_id:
                raise InvalidStateError("ESTIMATE_SUPERSEDED", "a newer estimate exists")
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request, now, status="AWAITING_ESTIMATE_REVISION"
                ),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="estimate_rejection",
                estimate=estimate,
                next_estimate=self._next_estimate(
                    estimate,
                    now,
                    status="rejected",
                    rejected_by_artisan_id=actor.actor_id,
                    rejected_at=now,
                    artisan_rejection_reason=reason,
                ),
                dispute_reason=ARTISAN_REJECTION_DISPUTE_REASON,
                dispute_details=reason,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def create_revised_estimate(
        self, *, actor: Actor, service_request_id: str, payload: EstimateCreateRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "admin")
        description = self._validate_estimate_payload(payload)

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("CREATE_REVISED_ESTIMATE", service_request.status)
            self._require_no_pending_estimate(service_request)
            previous = self._latest_estimate(service_request.service_request_id)
            revision_number = (previous.revision_number if previous is not None else 1) + 1
            estimate = BillingEstimateRecord(
                estimate_id=f"est_{uuid.uuid4().hex[:12]}",
                service_request_id=service_request.service_request_id,
                author_id=actor.actor_id,
                estimated_price=payload.estimated_price,
                description=description,
                valid_until=payload.valid_until,
                status="pending",
                revision_number=revision_number,
                created_at=now,
                updated_at=now,
            )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request, now, status="AWAITING_DUAL_ACCEPTANCE"
                ),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="revision_creation",
                next_estimate=estimate,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def respond_to_revision(
        self, *, actor: Actor, estimate_id: str, payload: RevisionResponseRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "client", "professional")
        response_text = (payload.response or "").strip() or None
        service_request_id = self._load_estimate(estimate_id).service_request_id
        self._party(actor, self._load_service_request(service_request_id))

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            party = self._party(actor, service_request)
            estimate = self._load_estimate(estimate_id)
            if is_estimate_lapsed(estimate, now=now):
                return self._expiry_transition(service_request, estimate, now, reject=True)
            require_precondition("RESPOND_TO_REVISION", service_request.status)
            if estimate.revision_number <= 1:
                raise InvalidStateError("NOT_A_REVISION", "estimate is not a revision")
            self._require_current_pending(estimate)

            accepted = payload.decision == "ACCEPT"
            if party == "client":
                if estimate.client_accepted is not None:
                    raise InvalidStateError("ALREADY_RESPONDED", "client already responded")
                estimate_changes: dict[str, Any] = {
                    "client_accepted": accepted,
                    "client_response_date": now,
                    "client_response": response_text,
                }
            else:
                if estimate.artisan_accepted is not None:
                    raise InvalidStateError("ALREADY_RESPONDED", "artisan already responded")
                estimate_changes = {"artisan_accepted": accepted, "artisan_response_date": now}

            responded = estimate.model_copy(update=estimate_changes)
            outcome = resolve_revision_outcome(
                client_accepted=responded.client_accepted,
                artisan_accepted=responded.artisan_accepted,
            )
            refusal: Optional[ArtisanRefusalRecord] = None
            if not accepted and party == "professional":
                refusal = self._refusal(service_request, actor, now, source="REVISION")

            if outcome == "BOTH_ACCEPTED":
                estimate_changes["status"] = "accepted"
                next_request = self._next_request(
                    service_request,
                    now,
                    status="IN_PROGRESS",
                    estimated_price=estimate.estimated_price,
                )
            elif outcome == "REASSIGN":
                estimate_changes["status"] = "rejected"
                next_request = self._next_request(
                    service_request, now, status="AWAITING_ASSIGNATION", assigned_artisan_id=None
                )
            elif outcome == "CANCEL":
                estimate_changes["status"] = "rejected"
                next_request = self._next_request(
                    service_request, now, status="CANCELLED", assigned_artisan_id=None
                )
            else:
                next_request = self._next_request(service_request, now)

            return self._transition(
                service_request=service_request,
                next_request=next_request,
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="revision_acceptance" if accepted else "revision_refusal",
                estimate=estimate,
                next_estimate=self._next_estimate(estimate, now, **estimate_changes),
                refusal=refusal,
                completion_notes=response_text,
                additional_data={"outcome": outcome},
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def accept_assignment(
        self, *, actor: Actor, service_request_id: str
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "professional")

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("ACCEPT_ASSIGNMENT", service_request.status)
            if service_request.assigned_artisan_id is not None:
                raise InvalidStateError("ALREADY_ASSIGNED", "service request already assigned")
            if self._repository.has_refusal(
                service_request_id=service_request.service_request_id,
                artisan_id=actor.actor_id,
            ):
                raise InvalidStateError(
                    "ASSIGNMENT_PREVIOUSLY_REFUSED", "artisan already refused this request"
                )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request,
                    now,
                    status="IN_PROGRESS",
                    assigned_artisan_id=actor.actor_id,
                ),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="assignment_acceptance",
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def decline_assignment(
        self, *, actor: Actor, service_request_id: str
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "professional")

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("DECLINE_ASSIGNMENT", service_request.status)
            if self._repository.has_refusal(
                service_request_id=service_request.service_request_id,
                artisan_id=actor.actor_id,
            ):
                raise InvalidStateError(
                    "ASSIGNMENT_ALREADY_REFUSED", "artisan already refused this request"
                )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(service_request, now),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="assignment_refusal",
                refusal=self._refusal(service_request, actor, now, source="ASSIGNMENT"),
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def start_mission(
        self, *, actor: Actor, service_request_id: str
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "professional", "admin")

        def decide(service_request: ServiceRequestRecord, now: datetime) -> Optional[_Transition]:
            if actor.role == "professional":
                self._require_assigned_artisan(actor, service_request)
            require_precondition("START_MISSION", service_request.status)
            already_started = any(
                action.action_type == "mission_start"
                for action in self._repository.list_actions(
                    service_request_id=service_request.service_request_id
                )
            )
            if already_started:
                return None
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(service_request, now),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="mission_start",
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def validate(
        self, *, actor: Actor, service_request_id: str, payload: ValidationRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "client", "professional")
        notes = (payload.notes or "").strip() or None
        photos = [photo for photo in payload.photos if photo.strip()]
        if actor.role == "professional":
            if notes is None or len(notes) < ARTISAN_VALIDATION_NOTES_MIN_LENGTH:
                raise ValidationError(
                    "VALIDATION_NOTES_TOO_SHORT",
                    f"notes must be at least {ARTISAN_VALIDATION_NOTES_MIN_LENGTH} characters",
                )
            if not photos:
                raise ValidationError(
                    "VALIDATION_PHOTO_REQUIRED", "at least one photo reference is required"
                )

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            party = self._party(actor, service_request)
            next_status = resolve_validation_status(
                current_status=service_request.status, party=party
            )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(service_request, now, status=next_status),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="validation",
                completion_notes=notes,
                additional_data={"photos": photos},
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def raise_dispute(
        self, *, actor: Actor, service_request_id: str, payload: DisputeRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "client", "professional")
        details = payload.details.strip()
        if len(details) < DISPUTE_DETAILS_MIN_LENGTH:
            raise ValidationError(
                "DISPUTE_DETAILS_TOO_SHORT",
                f"details must be at least {DISPUTE_DETAILS_MIN_LENGTH} characters",
            )
        photos = [photo for photo in payload.photos if photo.strip()]

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            party = self._party(actor, service_request)
            next_status = resolve_dispute_status(
                current_status=service_request.status, party=party
            )
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(service_request, now, status=next_status),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="dispute",
                dispute_reason=payload.reason,
                dispute_details=details,
                additional_data={"photos": photos},
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def resolve_dispute(
        self, *, actor: Actor, service_request_id: str, payload: DisputeResolutionRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "admin")
        notes = (payload.resolution_notes or "").strip() or DEFAULT_RESOLUTION_NOTES

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("RESOLVE_DISPUTE", service_request.status)
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(service_request, now, status="RESOLVED"),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="dispute_resolution",
                completion_notes=notes,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def cancel_service_request(
        self, *, actor: Actor, service_request_id: str, payload: CancellationRequest
    ) -> ServiceRequestTransitionResponse:
        self._require_role(actor, "admin")
        reason = payload.reason.strip()
        if not reason:
            raise ValidationError("CANCELLATION_REASON_REQUIRED", "reason is required")

        def decide(service_request: ServiceRequestRecord, now: datetime) -> _Transition:
            require_precondition("CANCEL", service_request.status)
            pending = self._pending_estimate(service_request.service_request_id)
            return self._transition(
                service_request=service_request,
                next_request=self._next_request(
                    service_request, now, status="CANCELLED", assigned_artisan_id=None
                ),
                now=now,
                actor_id=actor.actor_id,
                actor_type=actor.role,
                action_type="cancellation",
                estimate=pending,
                next_estimate=(
                    self._next_estimate(pending, now, status="rejected")
                    if pending is not None
                    else None
                ),
                completion_notes=reason,
            )

        return self._execute(service_request_id=service_request_id, decide=decide)

    def expire_lapsed_estimates(
        self, *, now: Optional[datetime] = None
    ) -> EstimateExpirySweepResponse:
        swept_at = now or self._clock()
        expired: list[str] = []
        skipped: list[str] = []
        for lapsed in self._repository.list_lapsed_pending_estimates(now=swept_at):
            estimate_id = lapsed.estimate_id

            def decide(
                service_request: ServiceRequestRecord, _now: datetime, estimate_id=estimate_id
            ) -> _Transition:
                estimate = self._load_estimate(estimate_id)
                if not is_estimate_lapsed(estimate, now=swept_at):
                    raise InvalidStateError("ESTIMATE_NOT_LAPSED", "estimate is no longer pending")
                return self._expiry_transition(service_request, estimate, swept_at, reject=False)

            try:
                self._execute(service_request_id=lapsed.service_request_id, decide=decide)
            except (InvalidStateError, PersistenceError) as exc:
                logger.warning(
                    "billing_estimate.expiry.skipped",
                    extra={"extra_fields": {"estimate_id": estimate_id, "code": exc.code}},
                )
                skipped.append(estimate_id)
            else:
                expired.append(estimate_id)
        return EstimateExpirySweepResponse(
            swept_at=swept_at.isoformat(),
            expired_estimate_ids=expired,
            skipped_estimate_ids=skipped,
        )

    def get_service_request(
        self, *, actor: Actor, service_request_id: str
    ) -> ServiceRequestDetailResponse:
        service_request = self._load_service_request(service_request_id)
        self._require_read_access(actor, service_request)
        latest = self._latest_estimate(service_request_id)
        return ServiceRequestDetailResponse(
            service_request=self._to_summary(service_request),
            current_estimate=self._to_estimate_detail(latest) if latest is not None else None,
        )

    def list_service_requests(
        self,
        *,
        actor: Actor,
        status: Optional[ServiceRequestStatus],
        limit: int,
        cursor: Optional[str],
    ) -> ServiceRequestListResponse:
        rows, next_cursor = self._repository.list_service_requests(
            status=status,
            client_id=actor.actor_id if actor.role == "client" else None,
            assigned_artisan_id=actor.actor_id if actor.role == "professional" else None,
            limit=limit,
            cursor=cursor,
        )
        return ServiceRequestListResponse(
            items=[self._to_summary(row) for row in rows],
            next_cursor=next_cursor,
        )

    def list_disputed_requests(self, *, actor: Actor) -> DisputeQueueResponse:
        self._require_role(actor, "admin")
        disputed: list[ServiceRequestRecord] = []
        for disputed_status in sorted(DISPUTED_STATUSES):
            cursor: Optional[str] = None
            while True:
                rows, cursor = self._repository.list_service_requests(
                    status=disputed_status,
                    client_id=None,
                    assigned_artisan_id=None,
                    limit=DISPUTE_QUEUE_PAGE_SIZE,
                    cursor=cursor,
                )
                disputed.extend(rows)
                if cursor is None:
                    break
        disputed.sort(key=lambda row: (row.updated_at, row.service_request_id), reverse=True)
        items = []
        for service_request in disputed:
            actions = self._repository.list_actions(
                service_request_id=service_request.service_request_id
            )
            disputes = [action for action in actions if action.action_type == "dispute"]
            items.append(
                DisputedServiceRequestEntry(
                    service_request=self._to_summary(service_request),
                    latest_dispute=to_action_entry(disputes[-1]) if disputes else None,
                )
            )
        return DisputeQueueResponse(items=items, count=len(items))

    def list_estimates(
        self, *, actor: Actor, service_request_id: str
    ) -> BillingEstimateListResponse:
        service_request = self._load_service_request(service_request_id)
        self._require_read_access(actor, service_request)
        estimates = self._repository.list_estimates(service_request_id=service_request_id)
        return BillingEstimateListResponse(
            service_request_id=service_request_id,
            estimates=[self._to_estimate_detail(estimate) for estimate in estimates],
        )

    def get_timeline(
        self, *, actor: Actor, service_request_id: str
    ) -> ServiceRequestTimelineResponse:
        service_request = self._load_service_request(service_request_id)
        self._require_read_access(actor, service_request)
        history = self._repository.list_status_history(service_request_id=service_request_id)
        actions = self._repository.list_actions(service_request_id=service_request_id)
        return ServiceRequestTimelineResponse(
            service_request_id=service_request_id,
            status=service_request.status,
            projected_status=project_status(history),
            visited_statuses=visited_statuses(history),
            status_history=[to_history_entry(entry) for entry in history],
            actions=[to_action_entry(action) for action in actions],
        )

    def list_refusals(
        self, *, actor: Actor, service_request_id: str
    ) -> ArtisanRefusalListResponse:
        self._require_role(actor, "admin")
        self._load_service_request(service_request_id)
        refusals = self._repository.list_refusals(service_request_id=service_request_id)
        return ArtisanRefusalListResponse(
            service_request_id=service_request_id,
            refusals=[
                ArtisanRefusalEntry(
                    artisan_id=refusal.artisan_id,
                    service_request_id=refusal.service_request_id,
                    source=refusal.source,
                    refused_at=refusal.refused_at.isoformat(),
                )
                for refusal in refusals
            ],
        )

    def _execute(self, *, service_request_id: str, decide: _Decide) -> ServiceRequestTransitionResponse:
        for attempt in range(1, self._transition_max_attempts + 1):
            service_request = self._load_service_request(service_request_id)
            transition = decide(service_request, self._clock())
            if transition is None:
                return ServiceRequestTransitionResponse(
                    service_request_id=service_request_id,
                    previous_status=service_request.status,
                    status=service_request.status,
                )
            try:
                self._repository.commit_transition(transition.write)
            except ConcurrencyConflictError:
                logger.warning(
                    "service_request.transition.conflict",
                    extra={
                        "extra_fields": {
                            "service_request_id": service_request_id,
                            "attempt": attempt,
                        }
                    },
                )
                continue
            self._after_commit(transition)
            if transition.rejection is not None:
                raise transition.rejection
            return self._to_transition_response(transition)
        raise PersistenceError(
            "TRANSITION_CONTENTION",
            f"gave up after {self._transition_max_attempts} concurrent write conflicts",
        )

    def _after_commit(self, transition: _Transition) -> None:
        service_request = transition.write.service_request
        logger.info(
            "service_request.transition.committed",
            extra={
                "extra_fields": {
                    "service_request_id": service_request.service_request_id,
                    "previous_status": transition.previous_status,
                    "status": service_request.status,
                    "actor_type": transition.actor_type,
                    "row_version": service_request.row_version,
                }
            },
        )
        publish_safely(
            self._notification_publisher,
            ServiceRequestTransitionNotice(
                service_request_id=service_request.service_request_id,
                status=service_request.status,
                previous_status=transition.previous_status,
                actor_type=transition.actor_type,
                actor_id=transition.actor_id,
                occurred_at=service_request.updated_at,
            ),
        )

    def _transition(
        self,
        *,
        service_request: ServiceRequestRecord,
        next_request: ServiceRequestRecord,
        now: datetime,
        actor_id: str,
        actor_type: ActionActorType,
        action_type: ActionType,
        estimate: Optional[BillingEstimateRecord] = None,
        next_estimate: Optional[BillingEstimateRecord] = None,
        refusal: Optional[ArtisanRefusalRecord] = None,
        **action_fields: Any,
    ) -> _Transition:
        status_history = None
        if next_request.status != service_request.status:
            status_history = new_status_history(
                service_request_id=service_request.service_request_id,
                status=next_request.status,
                recorded_at=now,
            )
        action = new_action(
            service_request_id=service_request.service_request_id,
            actor_id=actor_id,
            actor_type=actor_type,
            action_type=action_type,
            status=next_request.status,
            occurred_at=now,
            estimate_id=next_estimate.estimate_id if next_estimate is not None else None,
            **action_fields,
        )
        return _Transition(
            write=ServiceRequestTransitionWrite(
                service_request=next_request,
                expected_row_version=service_request.row_version,
                estimate=next_estimate,
                expected_estimate_row_version=estimate.row_version if estimate is not None else None,
                status_history=status_history,
                actions=[action],
                refusal=refusal,
            ),
            previous_status=service_request.status,
            actor_id=actor_id,
            actor_type=actor_type,
        )

    def _expiry_transition(
        self,
        service_request: ServiceRequestRecord,
        estimate: BillingEstimateRecord,
        now: datetime,
        *,
        reject: bool,
    ) -> _Transition:
        if service_request.status in OPERATION_PRECONDITIONS["EXPIRE_ESTIMATE"]:
            next_request = self._next_request(
                service_request,
                now,
                status=resolve_estimate_expiry_status(revision_number=estimate.revision_number),
            )
        else:
            next_request = self._next_request(service_request, now)
        transition = self._transition(
            service_request=service_request,
            next_request=next_request,
            now=now,
            actor_id=SYSTEM_ACTOR_ID,
            actor_type="system",
            action_type="estimate_expiry",
            estimate=estimate,
            next_estimate=self._next_estimate(estimate, now, status="expired"),
            additional_data={
                "valid_until": estimate.valid_until.isoformat() if estimate.valid_until else None
            },
        )
        if reject:
            transition.rejection = InvalidStateError(
                "ESTIMATE_EXPIRED", f"estimate {estimate.estimate_id} expired"
            )
        return transition

    def _next_request(
        self, service_request: ServiceRequestRecord, now: datetime, **changes: Any
    ) -> ServiceRequestRecord:
        changes.update({"updated_at": now, "row_version": service_request.row_version + 1})
        return service_request.model_copy(update=changes)

    def _next_estimate(
        self, estimate: BillingEstimateRecord, now: datetime, **changes: Any
    ) -> BillingEstimateRecord:
        changes.update({"updated_at": now, "row_version": estimate.row_version + 1})
        return estimate.model_copy(update=changes)

    def _refusal(
        self,
        service_request: ServiceRequestRecord,
        actor: Actor,
        now: datetime,
        *,
        source: ArtisanRefusalSource,
    ) -> ArtisanRefusalRecord:
        return ArtisanRefusalRecord(
            artisan_id=actor.actor_id,
            service_request_id=service_request.service_request_id,
            source=source,
            refused_at=now,
        )

    def _validate_estimate_payload(self, payload: EstimateCreateRequest) -> str:
        description = payload.description.strip()
        if not description:
            raise ValidationError("ESTIMATE_DESCRIPTION_REQUIRED", "description is required")
        if payload.valid_until is not None and payload.valid_until <= self._clock():
            raise ValidationError("ESTIMATE_VALID_UNTIL_IN_PAST", "valid_until must be future")
        return description

    def _require_current_pending(self, estimate: BillingEstimateRecord) -> None:
        if estimate.status != "pending":
            raise InvalidStateError("ESTIMATE_NOT_PENDING", f"estimate is {estimate.status}")
        pending = self._pending_estimate(estimate.service_request_id)
        if pending is None or pending.estimate_id != estimate.estimate_id:
            raise InvalidStateError("ESTIMATE_SUPERSEDED", "estimate is not the current one")

    def _require_no_pending_estimate(self, service_request: ServiceRequestRecord) -> None:
        pending = self._pending_estimate(service_request.service_request_id)
        if pending is not None:
            raise InvalidStateError(
                "PENDING_ESTIMATE_EXISTS", f"estimate {pending.estimate_id} is still pending"
            )

    def _pending_estimate(self, service_request_id: str) -> Optional[BillingEstimateRecord]:
        for estimate in self._repository.list_estimates(service_request_id=service_request_id):
            if estimate.status == "pending":
                return estimate
        return None

    def _latest_estimate(self, service_request_id: str) -> Optional[BillingEstimateRecord]:
        estimates = self._repository.list_estimates(service_request_id=service_request_id)
        return estimates[-1] if estimates else None

    def _load_service_request(self, service_request_id: str) -> ServiceRequestRecord:
        service_request = self._repository.get_service_request(
            service_request_id=service_request_id
        )
        if service_request is None:
            raise ServiceRequestNotFoundError("SERVICE_REQUEST_NOT_FOUND", service_request_id)
        return service_request

    def _load_estimate(self, estimate_id: str) -> BillingEstimateRecord:
        estimate = self._repository.get_estimate(estimate_id=estimate_id)
        if estimate is None:
            raise ServiceRequestNotFoundError("BILLING_ESTIMATE_NOT_FOUND", estimate_id)
        return estimate

    def _require_role(self, actor: Actor, *roles: ActorRole) -> None:
        if actor.role not in roles:
            raise AuthorizationError(
                "ROLE_NOT_PERMITTED", f"{actor.role} cannot perform this operation"
            )

    def _require_owner(self, actor: Actor, service_request: ServiceRequestRecord) -> None:
        if service_request.client_id != actor.actor_id:
            raise AuthorizationError("NOT_REQUEST_OWNER", "actor does not own this request")

    def _require_assigned_artisan(
        self, actor: Actor, service_request: ServiceRequestRecord
    ) -> None:
        if service_request.assigned_artisan_id != actor.actor_id:
            raise AuthorizationError(
                "NOT_ASSIGNED_ARTISAN", "actor is not the assigned artisan"
            )

    def _party(self, actor: Actor, service_request: ServiceRequestRecord) -> ValidatingParty:
        if actor.role == "client":
            self._require_owner(actor, service_request)
            return "client"
        if actor.role == "professional":
            self._require_assigned_artisan(actor, service_request)
            return "professional"
        raise AuthorizationError("ROLE_NOT_PERMITTED", "admin cannot act as a party")

    def _require_read_access(self, actor: Actor, service_request: ServiceRequestRecord) -> None:
        if actor.role == "admin":
            return
        if actor.role == "client":
            self._require_owner(actor, service_request)
            return
        self._require_assigned_artisan(actor, service_request)

    def _to_transition_response(self, transition: _Transition) -> ServiceRequestTransitionResponse:
        write = transition.write
        return ServiceRequestTransitionResponse(
            service_request_id=write.service_request.service_request_id,
            previous_status=transition.previous_status,
            status=write.service_request.status,
            estimate_id=write.estimate.estimate_id if write.estimate is not None else None,
            status_history_id=(
                write.status_history.history_id if write.status_history is not None else None
            ),
            action_ids=[action.action_id for action in write.actions],
            refusal_recorded=write.refusal is not None,
        )

    def _to_summary(self, service_request: ServiceRequestRecord) -> ServiceRequestSummary:
        return ServiceRequestSummary(
            service_request_id=service_request.service_request_id,
            client_id=service_request.client_id,
            assigned_artisan_id=service_request.assigned_artisan_id,
            status=service_request.status,
            service_type=service_request.service_type,
            title=service_request.title,
            estimated_price=service_request.estimated_price,
            created_at=service_request.created_at.isoformat(),
            updated_at=service_request.updated_at.isoformat(),
            version=service_request.row_version,
        )

    def _to_estimate_detail(self, estimate: BillingEstimateRecord) -> BillingEstimateDetail:
        status = "expired" if is_estimate_lapsed(estimate, now=self._clock()) else estimate.status
        return BillingEstimateDetail(
            estimate_id=estimate.estimate_id,
            service_request_id=estimate.service_request_id,
            author_id=estimate.author_id,
            estimated_price=estimate.estimated_price,
            description=estimate.description,
            valid_until=_optional_iso(estimate.valid_until),
            status=status,
            revision_number=estimate.revision_number,
            client_accepted=estimate.client_accepted,
            artisan_accepted=estimate.artisan_accepted,
            client_response_date=_optional_iso(estimate.client_response_date),
            artisan_response_date=_optional_iso(estimate.artisan_response_date),
            client_response=estimate.client_response,
            artisan_rejection_reason=estimate.artisan_rejection_reason,
            rejected_by_artisan_id=estimate.rejected_by_artisan_id,
            rejected_at=_optional_iso(estimate.rejected_at),
            created_at=estimate.created_at.isoformat(),
        )


def _optional_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
