# services/couriers/errors.py

from enum import Enum
from typing import Any, Optional


class FailureKind(str, Enum):
    """Classification of a single failed attempt against the carrier."""
    TRANSIENT_NETWORK = "transient_network"
    AUTH_REJECTED = "auth_rejected"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"

    @property
    def retryable(self) -> bool:
        return self in (FailureKind.TRANSIENT_NETWORK, FailureKind.RATE_LIMITED, FailureKind.SERVER_ERROR)


class ShippingError(Exception):
    """Base class for everything the shipping core raises."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthError(ShippingError):
    """The carrier refused our credentials; nothing works until they are reconfigured."""


class ValidationError(ShippingError, ValueError):
    """Malformed input, rejected before anything is sent to the carrier."""


class CarrierRequestError(ShippingError):
    """The carrier rejected the request itself (4xx). Not retried."""

    def __init__(self, message: str, status_code: int, payload: Any = None):
        super().__init__(message, details=payload)
        self.status_code = status_code
        self.payload = payload


class CarrierUnavailableError(ShippingError):
    """Retries ran out on network, rate-limit or 5xx failures."""

    def __init__(self, message: str, kind: FailureKind, status_code: Optional[int] = None, attempts: int = 0):
        super().__init__(message, details={"kind": kind.value, "status_code": status_code, "attempts": attempts})
        self.kind = kind
        self.status_code = status_code
        self.attempts = attempts


class DuplicatePurchaseError(ShippingError):
    """The order already has a label that has not been cancelled."""


class InvalidStateTransitionError(ShippingError):
    """The label state machine does not allow the requested move."""


class NotFoundError(ShippingError):
    pass
