from typing import Annotated

from fastapi import Depends, status

from src.api.routers import service_requests as shared
from src.api.routers.service_request_http_errors import raise_service_request_http_exception
from src.core.service_requests import (
    Actor,
    CancellationRequest,
    DisputeRequest,
    DisputeResolutionRequest,
    ServiceRequestLifecycleError,
    ServiceRequestTransitionResponse,
    ServiceRequestWorkflowService,
    ValidationRequest,
)


@shared.router.post(
    "/service-requests/{service_request_id}/assignment/accept",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Accept Assignment",
    description=(
        "Artisan takes an unassigned request in AWAITING_ASSIGNATION; "
        "it moves to IN_PROGRESS."
    ),
)
def accept_assignment(
    service_request_id: shared.ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.accept_assignment(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/assignment/decline",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Decline Assignment",
    description="Artisan declines the request; a refusal is recorded and the status is unchanged.",
)
def decline_assignment(
    service_request_id: shared.ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.decline_assignment(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/mission/start",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Start Mission",
    description="Idempotent confirmation that work has begun on an IN_PROGRESS request.",
)
def start_mission(
    service_request_id: shared.ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.start_mission(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/validation",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Completed Work",
    description=(
        "Client or assigned artisan confirms the work. The second party to validate "
        "completes the request."
    ),
)
def validate_service_request(
    service_request_id: shared.ServiceRequestIdPath,
    payload: ValidationRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.validate(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/disputes",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Raise Dispute",
    description=(
        "Client or assigned artisan flags a disagreement. A dispute raised while the other "
        "party's dispute is open moves the request to DISPUTED_BY_BOTH."
    ),
)
def raise_dispute(
    service_request_id: shared.ServiceRequestIdPath,
    payload: DisputeRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.raise_dispute(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/disputes/resolution",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Resolve Dispute",
    description="Admin closes an open dispute; the request moves to RESOLVED.",
)
def resolve_dispute(
    service_request_id: shared.ServiceRequestIdPath,
    payload: DisputeResolutionRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.resolve_dispute(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@shared.router.post(
    "/service-requests/{service_request_id}/cancellation",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel Service Request",
    description="Admin cancels a non-terminal request; any pending estimate is rejected.",
)
def cancel_service_request(
    service_request_id: shared.ServiceRequestIdPath,
    payload: CancellationRequest,
    actor: Annotated[Actor, Depends(shared.get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(shared.get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.cancel_service_request(
            actor=actor,
            service_request_id=service_request_id,
            payload=payload,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)
