from datetime import datetime
from typing import Literal, Optional

from src.core.service_requests.errors import InvalidStateError
from src.core.service_requests.models import (
    BillingEstimateRecord,
    ServiceRequestStatus,
    ValidatingParty,
)

ServiceRequestOperation = Literal[
    "CONFIRM_DOWN_PAYMENT",
    "CREATE_INITIAL_ESTIMATE",
    "RESPOND_TO_ESTIMATE",
    "ARTISAN_REJECT_ESTIMATE",
    "CREATE_REVISED_ESTIMATE",
    "RESPOND_TO_REVISION",
    "ACCEPT_ASSIGNMENT",
    "DECLINE_ASSIGNMENT",
    "START_MISSION",
    "VALIDATE",
    "RAISE_DISPUTE",
    "RESOLVE_DISPUTE",
    "CANCEL",
    "EXPIRE_ESTIMATE",
]

RevisionOutcome = Literal["AWAITING_OTHER_PARTY", "BOTH_ACCEPTED", "REASSIGN", "CANCEL"]

ALL_STATUSES: frozenset[ServiceRequestStatus] = frozenset(
    {
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
    }
)
TERMINAL_STATUSES: frozenset[ServiceRequestStatus] = frozenset(
    {"COMPLETED", "CANCELLED", "RESOLVED"}
)
DISPUTED_STATUSES: frozenset[ServiceRequestStatus] = frozenset(
    {"DISPUTED_BY_CLIENT", "DISPUTED_BY_ARTISAN", "DISPUTED_BY_BOTH"}
)
CANCELLABLE_STATUSES: frozenset[ServiceRequestStatus] = ALL_STATUSES - TERMINAL_STATUSES

OPERATION_PRECONDITIONS: dict[ServiceRequestOperation, frozenset[ServiceRequestStatus]] = {
    "CONFIRM_DOWN_PAYMENT": frozenset({"AWAITING_PAYMENT"}),
    "CREATE_INITIAL_ESTIMATE": frozenset({"AWAITING_ESTIMATE"}),
    "RESPOND_TO_ESTIMATE": frozenset({"AWAITING_ESTIMATE_ACCEPTATION"}),
    "ARTISAN_REJECT_ESTIMATE": frozenset({"IN_PROGRESS"}),
    "CREATE_REVISED_ESTIMATE": frozenset({"AWAITING_ESTIMATE_REVISION"}),
    "RESPOND_TO_REVISION": frozenset({"AWAITING_DUAL_ACCEPTANCE"}),
    "ACCEPT_ASSIGNMENT": frozenset({"AWAITING_ASSIGNATION"}),
    "DECLINE_ASSIGNMENT": frozenset({"AWAITING_ASSIGNATION"}),
    "START_MISSION": frozenset({"IN_PROGRESS"}),
    "VALIDATE": frozenset({"IN_PROGRESS", "CLIENT_VALIDATED", "ARTISAN_VALIDATED", "RESOLVED"}),
    "RAISE_DISPUTE": frozenset(
        {
            "IN_PROGRESS",
            "CLIENT_VALIDATED",
            "ARTISAN_VALIDATED",
            "DISPUTED_BY_CLIENT",
            "DISPUTED_BY_ARTISAN",
        }
    ),
    "RESOLVE_DISPUTE": DISPUTED_STATUSES,
    "CANCEL": CANCELLABLE_STATUSES,
    "EXPIRE_ESTIMATE": frozenset({"AWAITING_ESTIMATE_ACCEPTATION", "AWAITING_DUAL_ACCEPTANCE"}),
}


def require_precondition(
    operation: ServiceRequestOperation, current_status: ServiceRequestStatus
) -> None:
    if current_status not in OPERATION_PRECONDITIONS[operation]:
        raise InvalidStateError(
            "INVALID_STATE",
            f"{operation} not allowed from {current_status}",
        )


def is_terminal(status: ServiceRequestStatus) -> bool:
    return status in TERMINAL_STATUSES


def resolve_revision_outcome(
    *, client_accepted: Optional[bool], artisan_accepted: Optional[bool]
) -> RevisionOutcome:
    if client_accepted is True and artisan_accepted is True:
        return "BOTH_ACCEPTED"
    if client_accepted is False or artisan_accepted is False:
        # a refusal reassigns only when the other party had already accepted
        if client_accepted is True or artisan_accepted is True:
            return "REASSIGN"
        return "CANCEL"
    return "AWAITING_OTHER_PARTY"


def resolve_validation_status(
    *, current_status: ServiceRequestStatus, party: ValidatingParty
) -> ServiceRequestStatus:
    require_precondition("VALIDATE", current_status)
    own_status: ServiceRequestStatus = (
        "CLIENT_VALIDATED" if party == "client" else "ARTISAN_VALIDATED"
    )
    other_status: ServiceRequestStatus = (
        "ARTISAN_VALIDATED" if party == "client" else "CLIENT_VALIDATED"
    )
    if current_status == own_status:
        raise InvalidStateError("ALREADY_VALIDATED", f"{party} already validated")
    if current_status == other_status:
        return "COMPLETED"
    return own_status


def resolve_dispute_status(
    *, current_status: ServiceRequestStatus, party: ValidatingParty
) -> ServiceRequestStatus:
    require_precondition("RAISE_DISPUTE", current_status)
    own_status: ServiceRequestStatus = (
        "DISPUTED_BY_CLIENT" if party == "client" else "DISPUTED_BY_ARTISAN"
    )
    if current_status == own_status:
        raise InvalidStateError("DISPUTE_ALREADY_OPEN", f"{party} already has an open dispute")
    if current_status in DISPUTED_STATUSES:
        return "DISPUTED_BY_BOTH"
    return own_status


def resolve_estimate_expiry_status(*, revision_number: int) -> ServiceRequestStatus:
    return "AWAITING_ESTIMATE" if revision_number <= 1 else "AWAITING_ESTIMATE_REVISION"


def is_estimate_lapsed(estimate: BillingEstimateRecord, *, now: datetime) -> bool:
    return (
        estimate.status == "pending"
        and estimate.valid_until is not None
        and estimate.valid_until < now
    )
