import logging
from datetime import datetime
from threading import Lock
from typing import Optional, Protocol

from pydantic import BaseModel

from src.core.service_requests.models import ActionActorType, ServiceRequestStatus

logger = logging.getLogger(__name__)


class ServiceRequestTransitionNotice(BaseModel):
    service_request_id: str
    status: ServiceRequestStatus
    previous_status: Optional[ServiceRequestStatus] = None
    actor_type: ActionActorType
    actor_id: str
    occurred_at: datetime


class NotificationPublisher(Protocol):
    def publish(self, notice: ServiceRequestTransitionNotice) -> None: ...


class LoggingNotificationPublisher:
    def publish(self, notice: ServiceRequestTransitionNotice) -> None:
        logger.info(
            "service_request.notice",
            extra={
                "extra_fields": {
                    "service_request_id": notice.service_request_id,
                    "status": notice.status,
                    "previous_status": notice.previous_status,
                    "actor_type": notice.actor_type,
                }
            },
        )


class RecordingNotificationPublisher:
    def __init__(self) -> None:
        self._lock = Lock()
        self._notices: list[ServiceRequestTransitionNotice] = []

    def publish(self, notice: ServiceRequestTransitionNotice) -> None:
        with self._lock:
            self._notices.append(notice)

    @property
    def notices(self) -> list[ServiceRequestTransitionNotice]:
        with self._lock:
            return list(self._notices)


def publish_safely(
    publisher: Optional[NotificationPublisher], notice: ServiceRequestTransitionNotice
) -> None:
    if publisher is None:
        return
    try:
        publisher.publish(notice)
    except Exception:
        # the transition is already committed
        logger.exception(
            "Transition notice publication failed for %s", notice.service_request_id
        )
