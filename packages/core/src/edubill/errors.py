"""Error taxonomy shared by the authorization core and the state machines."""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Typed failure reasons surfaced to callers."""

    OUT_OF_SCOPE = "out_of_scope"
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"
    IMMUTABLE_ENTITY = "immutable_entity"
    INVALID_HIERARCHY = "invalid_hierarchy"
    INVALID_SCHEDULE = "invalid_schedule"
    INVALID_PAYLOAD = "invalid_payload"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    NOT_FOUND = "not_found"


class EdubillError(Exception):
    """Base exception for all core failures."""

    kind: ErrorKind = ErrorKind.FORBIDDEN

    def __init__(self, message: str, kind: ErrorKind | None = None, details: Any = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.details = details


class NotFoundError(EdubillError):
    """Entity does not exist."""

    kind = ErrorKind.NOT_FOUND


class OutOfScopeError(NotFoundError):
    """Target lies outside the caller's resolved scope.

    Subclasses NotFoundError so that existence of out-of-scope entities is
    never revealed to upstream callers.
    """

    kind = ErrorKind.OUT_OF_SCOPE


class ForbiddenError(EdubillError):
    """In scope, but the caller lacks the capability."""

    kind = ErrorKind.FORBIDDEN


class InvalidTransitionError(EdubillError):
    """State machine rejects the action from the current status."""

    kind = ErrorKind.INVALID_TRANSITION


class ImmutableEntityError(EdubillError):
    """Write attempted on a terminal entity."""

    kind = ErrorKind.IMMUTABLE_ENTITY


class InvalidHierarchyError(EdubillError):
    """Tenant containment invariant violated."""

    kind = ErrorKind.INVALID_HIERARCHY


class InvalidScheduleError(EdubillError):
    """Payment schedule template is malformed."""

    kind = ErrorKind.INVALID_SCHEDULE


class InvalidPayloadError(EdubillError):
    """Required transition payload is missing or malformed."""

    kind = ErrorKind.INVALID_PAYLOAD


class ConcurrentModificationError(EdubillError):
    """Compare-and-swap lost a race against another writer."""

    kind = ErrorKind.CONCURRENT_MODIFICATION


_ERRORS_BY_KIND: dict[ErrorKind, type[EdubillError]] = {
    ErrorKind.OUT_OF_SCOPE: OutOfScopeError,
    ErrorKind.FORBIDDEN: ForbiddenError,
    ErrorKind.INVALID_TRANSITION: InvalidTransitionError,
    ErrorKind.IMMUTABLE_ENTITY: ImmutableEntityError,
    ErrorKind.INVALID_HIERARCHY: InvalidHierarchyError,
    ErrorKind.INVALID_SCHEDULE: InvalidScheduleError,
    ErrorKind.INVALID_PAYLOAD: InvalidPayloadError,
    ErrorKind.CONCURRENT_MODIFICATION: ConcurrentModificationError,
    ErrorKind.NOT_FOUND: NotFoundError,
}


def error_for(kind: ErrorKind, message: str, details: Any = None) -> EdubillError:
    """Build the exception matching an ErrorKind."""
    return _ERRORS_BY_KIND[kind](message, details=details)
