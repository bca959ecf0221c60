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
    Actor,
    ArtisanEstimateRejectionRequest,
    ArtisanRefusalListResponse,
    BillingEstimateListResponse,
    CancellationRequest,
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
    ServiceRequestSupportabilityConfigResponse,
    ServiceRequestTimelineResponse,
    ServiceRequestTransitionResponse,
    ValidationRequest,
)
from src.core.service_requests.notifications import (
    LoggingNotificationPublisher,
    NotificationPublisher,
    RecordingNotificationPublisher,
)
from src.core.service_requests.repository import ServiceRequestRepository
from src.core.service_requests.service import ServiceRequestWorkflowService

__all__ = [
    "Actor",
    "ArtisanEstimateRejectionRequest",
    "ArtisanRefusalListResponse",
    "AuthorizationError",
    "BillingEstimateListResponse",
    "CancellationRequest",
    "ConcurrencyConflictError",
    "DisputeQueueResponse",
    "DisputeRequest",
    "DisputeResolutionRequest",
    "DownPaymentConfirmationRequest",
    "EstimateCreateRequest",
    "EstimateExpirySweepResponse",
    "EstimateResponseRequest",
    "InvalidStateError",
    "LoggingNotificationPublisher",
    "NotificationPublisher",
    "PersistenceError",
    "RecordingNotificationPublisher",
    "RevisionResponseRequest",
    "ServiceRequestCreateRequest",
    "ServiceRequestDetailResponse",
    "ServiceRequestLifecycleError",
    "ServiceRequestListResponse",
    "ServiceRequestNotFoundError",
    "ServiceRequestRepository",
    "ServiceRequestSupportabilityConfigResponse",
    "ServiceRequestTimelineResponse",
    "ServiceRequestTransitionResponse",
    "ServiceRequestWorkflowService",
    "ValidationError",
    "ValidationRequest",
]
