import os
import warnings
from typing import Optional, cast

from src.core.service_requests import (
    LoggingNotificationPublisher,
    NotificationPublisher,
    ServiceRequestRepository,
)
from src.infrastructure.service_requests import (
    InMemoryServiceRequestRepository,
    PostgresServiceRequestRepository,
    SqliteServiceRequestRepository,
)


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= 1 else default


def service_request_store_backend_name() -> str:
    backend = os.getenv("SERVICE_REQUEST_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    warnings.warn(
        (
            "SERVICE_REQUEST_STORE_BACKEND legacy runtime backends "
            "(IN_MEMORY/SQL/SQLITE) are deprecated; use POSTGRES."
        ),
        DeprecationWarning,
        stacklevel=2,
    )
    return "SQL" if backend in {"SQL", "SQLITE"} else "IN_MEMORY"


def service_request_sql_path() -> str:
    return os.getenv("SERVICE_REQUEST_SQL_PATH", ".data/service_requests.db")


def service_request_postgres_dsn() -> str:
    return os.getenv("SERVICE_REQUEST_POSTGRES_DSN", "").strip()


def require_down_payment() -> bool:
    return env_flag("SERVICE_REQUEST_REQUIRE_DOWN_PAYMENT", False)


def transition_max_attempts() -> int:
    return env_int("SERVICE_REQUEST_TRANSITION_MAX_ATTEMPTS", 3)


def notifications_enabled() -> bool:
    return env_flag("SERVICE_REQUEST_NOTIFICATIONS_ENABLED", True)


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [
        ConnectionError,
        OSError,
        TimeoutError,
        TypeError,
        ValueError,
    ]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> ServiceRequestRepository:
    backend = service_request_store_backend_name()
    if backend == "POSTGRES":
        dsn = service_request_postgres_dsn()
        if not dsn:
            raise RuntimeError("SERVICE_REQUEST_POSTGRES_DSN_REQUIRED")
        try:
            return cast(ServiceRequestRepository, PostgresServiceRequestRepository(dsn=dsn))
        except RuntimeError:
            raise
        except _postgres_connection_exception_types() as exc:
            raise RuntimeError("SERVICE_REQUEST_POSTGRES_CONNECTION_FAILED") from exc
    if backend == "SQL":
        return SqliteServiceRequestRepository(database_path=service_request_sql_path())
    return InMemoryServiceRequestRepository()


def build_notification_publisher() -> Optional[NotificationPublisher]:
    if not notifications_enabled():
        return None
    return LoggingNotificationPublisher()
