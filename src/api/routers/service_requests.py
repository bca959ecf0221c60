from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status

from src.api.routers import service_requests_config
from src.api.routers.service_request_http_errors import raise_service_request_http_exception
from src.core.service_requests import (
    Actor,
    ArtisanRefusalListResponse,
    BillingEstimateListResponse,
    DisputeQueueResponse,
    ServiceRequestCreateRequest,
    ServiceRequestDetailResponse,
    ServiceRequestLifecycleError,
    ServiceRequestListResponse,
    ServiceRequestSupportabilityConfigResponse,
    ServiceRequestTimelineResponse,
    ServiceRequestTransitionResponse,
    ServiceRequestWorkflowService,
)
from src.core.service_requests.models import ServiceRequestStatus

router = APIRouter(tags=["Service Request Lifecycle"])

_REPOSITORY = None
_SERVICE: Optional[ServiceRequestWorkflowService] = None
_ACTOR_ROLES = {"client", "professional", "admin"}


def get_service_request_workflow_service() -> ServiceRequestWorkflowService:
    global _REPOSITORY
    global _SERVICE
    if _REPOSITORY is None:
        _REPOSITORY = service_requests_config.build_repository()
    if _SERVICE is None:
        _SERVICE = ServiceRequestWorkflowService(
            repository=_REPOSITORY,
            notification_publisher=service_requests_config.build_notification_publisher(),
            require_down_payment=service_requests_config.require_down_payment(),
            transition_max_attempts=service_requests_config.transition_max_attempts(),
        )
    return _SERVICE


def reset_service_request_workflow_service_for_tests() -> None:
    global _REPOSITORY
    global _SERVICE
    _REPOSITORY = None
    _SERVICE = None


def get_actor(
    actor_id: Annotated[
        Optional[str],
        Header(
            alias="X-Actor-Id",
            description="Authenticated actor identifier forwarded by the gateway.",
            examples=["usr_client_01"],
        ),
    ] = None,
    actor_role: Annotated[
        Optional[str],
        Header(
            alias="X-Actor-Role",
            description="Actor role: client, professional or admin.",
            examples=["client"],
        ),
    ] = None,
) -> Actor:
    if actor_id is None or not actor_id.strip() or actor_role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="ACTOR_IDENTITY_REQUIRED",
        )
    role = actor_role.strip().lower()
    if role not in _ACTOR_ROLES:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="ACTOR_ROLE_UNSUPPORTED",
        )
    return Actor(actor_id=actor_id.strip(), role=role)


ServiceRequestIdPath = Annotated[
    str,
    Path(description="Service request identifier.", examples=["sr_001"]),
]


@router.post(
    "/service-requests",
    response_model=ServiceRequestTransitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Create Service Request",
    description=(
        "Client intake entry point. Creates the request in AWAITING_ESTIMATE, or in "
        "AWAITING_PAYMENT when a down payment is required, and writes the first history entry."
    ),
)
def create_service_request(
    payload: ServiceRequestCreateRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTransitionResponse:
    try:
        return service.create_service_request(actor=actor, payload=payload)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests",
    response_model=ServiceRequestListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Service Requests",
    description=(
        "Lists service requests visible to the actor: admins see all, clients their own, "
        "artisans those assigned to them."
    ),
)
def list_service_requests(
    actor: Annotated[Actor, Depends(get_actor)],
    status_filter: Annotated[
        Optional[ServiceRequestStatus],
        Query(alias="status", description="Optional status filter.", examples=["IN_PROGRESS"]),
    ] = None,
    limit: Annotated[
        int,
        Query(ge=1, le=100, description="Maximum number of rows.", examples=[20]),
    ] = 20,
    cursor: Annotated[
        Optional[str],
        Query(description="Cursor returned by the previous page.", examples=["sr_001"]),
    ] = None,
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestListResponse:
    try:
        return service.list_service_requests(
            actor=actor,
            status=status_filter,
            limit=limit,
            cursor=cursor,
        )
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests/disputes",
    response_model=DisputeQueueResponse,
    status_code=status.HTTP_200_OK,
    summary="List Disputed Service Requests",
    description=(
        "Admin queue of every request disputed by the client, the artisan or both, "
        "each with its most recent dispute action."
    ),
)
def list_disputed_service_requests(
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> DisputeQueueResponse:
    try:
        return service.list_disputed_requests(actor=actor)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests/supportability/config",
    response_model=ServiceRequestSupportabilityConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Service Request Supportability Configuration",
    description=(
        "Returns lifecycle runtime configuration and backend initialization status "
        "for operational diagnostics without direct database access."
    ),
)
def get_service_request_supportability_config() -> ServiceRequestSupportabilityConfigResponse:
    backend_error: Optional[str] = None
    backend_ready = True
    try:
        service_requests_config.build_repository()
    except RuntimeError as exc:
        backend_ready = False
        backend_error = str(exc)
    except Exception:
        backend_ready = False
        backend_error = "SERVICE_REQUEST_BACKEND_INIT_FAILED"

    return ServiceRequestSupportabilityConfigResponse(
        store_backend=service_requests_config.service_request_store_backend_name(),
        backend_ready=backend_ready,
        backend_init_error=backend_error,
        require_down_payment=service_requests_config.require_down_payment(),
        transition_max_attempts=service_requests_config.transition_max_attempts(),
        notifications_enabled=service_requests_config.notifications_enabled(),
    )


@router.get(
    "/service-requests/{service_request_id}",
    response_model=ServiceRequestDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Service Request",
    description="Returns the service request summary and its most recent billing estimate.",
)
def get_service_request(
    service_request_id: ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestDetailResponse:
    try:
        return service.get_service_request(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests/{service_request_id}/timeline",
    response_model=ServiceRequestTimelineResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Service Request Timeline",
    description=(
        "Returns the append-only status history and action records, the status projected "
        "from history, and every status the request has passed through."
    ),
)
def get_service_request_timeline(
    service_request_id: ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> ServiceRequestTimelineResponse:
    try:
        return service.get_timeline(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests/{service_request_id}/estimates",
    response_model=BillingEstimateListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Billing Estimates",
    description="Returns every billing estimate of the request in creation order.",
)
def list_billing_estimates(
    service_request_id: ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> BillingEstimateListResponse:
    try:
        return service.list_estimates(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)


@router.get(
    "/service-requests/{service_request_id}/refusals",
    response_model=ArtisanRefusalListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Artisan Refusals",
    description="Admin view of artisans who declined the assignment or a revised estimate.",
)
def list_artisan_refusals(
    service_request_id: ServiceRequestIdPath,
    actor: Annotated[Actor, Depends(get_actor)],
    service: Annotated[
        ServiceRequestWorkflowService, Depends(get_service_request_workflow_service)
    ] = None,
) -> ArtisanRefusalListResponse:
    try:
        return service.list_refusals(actor=actor, service_request_id=service_request_id)
    except ServiceRequestLifecycleError as exc:
        raise_service_request_http_exception(exc)
