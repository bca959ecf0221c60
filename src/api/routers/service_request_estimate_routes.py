from typing import Annotated

from fastapi import Depends, Path, status

from src.api.routers import service_requests as shared
from src.api.routers.service_request_http_errors import raise_service_request_http_exception
from src.core.service_requests import (
    Actor,
    ArtisanEstimateRejectionRequest,
    AuthorizationError,
    DownPaymentConfirmationRequest,
    EstimateCreateRequest,
    EstimateExpirySweepResponse,
    EstimateResponseRequest,
    RevisionResponseRequest,
    ServiceRequestLifecycleError,
    ServiceRequestTransitionResponse,
    ServiceRequestWorkflowService,
)

EstimateIdPath = Annotated[
    str,
    Path(description="Billing estimate identifier.", examples=["est_001"]),
]


@shared.router.post(
    "/service-requests/{service_request_id}/down-payment",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm Down Payment",
    description=(
        "Payment collaborator callback reporting a captured down payment. "
        "Moves the request from AWAITING_PAYMENT to AWAITING_ESTIMATE."
    ),
)
def confirm_down_payment(
    service_request_id: shared.ServiceRequestIdPath,
    payload: DownPaymentConfirmationRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.confirm_down_payment(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/estimates",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Create Initial Billing Estimate",
    description=(
        "Admin creates the pending revision-1 estimate. "
        "Moves the request from AWAITING_ESTIMATE to AWAITING_ESTIMATE_ACCEPTATION."
    ),
)
def create_initial_estimate(
    service_request_id: shared.ServiceRequestIdPath,
    payload: EstimateCreateRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.create_initial_estimate(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/estimates/revisions",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Create Revised Billing Estimate",
    description=(
        "Admin creates the next revision after an artisan rejected the accepted estimate. "
        "Moves the request to AWAITING_DUAL_ACCEPTANCE."
    ),
)
def create_revised_estimate(
    service_request_id: shared.ServiceRequestIdPath,
    payload: EstimateCreateRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.create_revised_estimate(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/billing-estimates/expiry-sweep",
    response_model=EstimateExpirySweepResponse,
    status_code=status.HTTP_200_OK,
    summary="Expire Lapsed Billing Estimates",
    description=(
        "Housekeeping sweep marking pending estimates past valid_until as expired. "
        "Transitions also expire estimates lazily on access."
    ),
)
def expire_lapsed_estimates(
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> EstimateExpirySweepResponse:
    try:
        if actor.role != "admin":
            raise AuthorizationError("ROLE_NOT_PERMITTED", "expiry sweep requires admin")
        return service.expire_lapsed_estimates()
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/billing-estimates/{estimate_id}/response",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Respond To Billing Estimate",
    description=(
        "Client accepts or rejects the initial estimate. Accept moves the request to "
        "AWAITING_ASSIGNATION; reject cancels it."
    ),
)
def respond_to_estimate(
    estimate_id: EstimateIdPath,
    payload: EstimateResponseRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.respond_to_estimate(actor=actor, estimate_id=estimate_id, payload=payload)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/billing-estimates/{estimate_id}/artisan-rejection",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Artisan Rejects Accepted Estimate",
    description=(
        "Assigned artisan reopens pricing with a justification of at least 50 characters. "
        "Moves the request from IN_PROGRESS to AWAITING_ESTIMATE_REVISION."
    ),
)
def artisan_reject_estimate(
    estimate_id: EstimateIdPath,
    payload: ArtisanEstimateRejectionRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.artisan_reject_estimate(
            actor=actor,
            estimate_id=estimate_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/billing-estimates/{estimate_id}/revision-response",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Respond To Revised Estimate",
    description=(
        "Client or assigned artisan accepts or refuses a revised estimate. Both accepting "
        "resumes the mission; a refusal reassigns or cancels depending on the other party."
    ),
)
def respond_to_revision(
    estimate_id: EstimateIdPath,
    payload: RevisionResponseRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.respond_to_revision(actor=actor, estimate_id=estimate_id, payload=payload)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)
