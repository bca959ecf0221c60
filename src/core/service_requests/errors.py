from typing import Literal

ServiceRequestErrorKind = Literal[
    "NOT_FOUND",
    "INVALID_STATE",
    "AUTHORIZATION",
    "VALIDATION",
    "PERSISTENCE",
]


class ServiceRequestLifecycleError(Exception):
    kind: ServiceRequestErrorKind = "VALIDATION"
    retriable = False

    def __init__(self, code: str, reason: str = "") -> None:
        self.code = code
        self.reason = reason or code
        super().__init__(f"{code}: {reason}" if reason else code)


class ServiceRequestNotFoundError(ServiceRequestLifecycleError):
    kind = "NOT_FOUND"


class InvalidStateError(ServiceRequestLifecycleError):
    """Precondition failed; callers must re-read state before deciding to retry."""

    kind = "INVALID_STATE"


class AuthorizationError(ServiceRequestLifecycleError):
    kind = "AUTHORIZATION"


class ValidationError(ServiceRequestLifecycleError):
    kind = "VALIDATION"


class PersistenceError(ServiceRequestLifecycleError):
    kind = "PERSISTENCE"
    retriable = True


class ConcurrencyConflictError(Exception):
    """Raised by repositories when a versioned write loses a race."""
