"""Failure taxonomy for the dispatch core.

Every error carries a kind and a retryable flag so callers can tell
"retry" from "give up" from "bug" without parsing messages.
"""

from enum import Enum
from typing import Any, ClassVar


class ErrorKind(str, Enum):
    """Broad failure categories surfaced to callers."""

    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


class DispatchError(Exception):
    """Base class for all dispatch core failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.INVALID_REQUEST
    retryable: ClassVar[bool] = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for transport layers."""
        return {
            "error": type(self).__name__,
            "kind": self.kind.value,
            "message": str(self),
            "retryable": self.retryable,
        }


# Conflicts


class ConflictError(DispatchError):
    kind = ErrorKind.CONFLICT


class VersionConflict(ConflictError):
    """Conditional update observed a different version than expected."""

    retryable = True

    def __init__(self, delivery_id: str, expected_version: int, actual_version: int | None) -> None:
        super().__init__(
            f"Delivery {delivery_id} version mismatch: "
            f"expected {expected_version}, found {actual_version}"
        )
        self.delivery_id = delivery_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ClaimConflict(ConflictError):
    """Claim kept losing to unrelated concurrent writes; safe to retry."""

    retryable = True


class AlreadyClaimed(ConflictError):
    """Another courier won the claim."""


class DuplicateOrderNumber(ConflictError):
    """Order number (or id) already exists in the registry."""


# Invalid state


class InvalidStateError(DispatchError, ValueError):
    kind = ErrorKind.INVALID_STATE


class IllegalTransition(InvalidStateError):
    """Requested status change is not in the transition table."""


class AlreadyTerminal(IllegalTransition):
    """Delivery can no longer be cancelled."""


class NotAssignedCourier(InvalidStateError):
    """Courier acted on a delivery assigned to someone else."""


# Dependencies


class DependencyUnavailable(DispatchError):
    kind = ErrorKind.DEPENDENCY_UNAVAILABLE
    retryable = True


class DistanceUnavailable(DependencyUnavailable):
    """Routing provider could not produce a distance."""


class GeocodingUnavailable(DependencyUnavailable):
    """Neither routing nor the straight-line fallback could measure distance."""


# Not found


class NotFoundError(DispatchError, LookupError):
    kind = ErrorKind.NOT_FOUND


class DeliveryNotFound(NotFoundError):
    pass


class CourierNotFound(NotFoundError):
    pass


# Invalid request


class InvalidRequest(DispatchError, ValueError):
    kind = ErrorKind.INVALID_REQUEST


class UnknownZone(InvalidRequest):
    """Address does not fall into any configured pricing zone."""


class NotEligible(InvalidRequest):
    """Courier may not claim this delivery."""
