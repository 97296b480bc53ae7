"""
Error taxonomy for the review engine.

Capacity exhaustion (no eligible and available worker) is not an error:
assignment operations return None and the task stays queued.
"""
from typing import Iterable, Optional


class ReviewFlowError(Exception):
    """Base class for all engine errors."""


class NotFound(ReviewFlowError):
    """A task, project task or worker id is unknown."""

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} {item_id} not found")


class PreconditionFailed(ReviewFlowError):
    """
    The requested transition is not legal from the current state.

    Always carries the current status so callers can show it.
    """

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        allowed_statuses: Optional[Iterable[str]] = None,
    ):
        self.current_status = current_status
        self.allowed_statuses = sorted(allowed_statuses or [])
        detail = message
        if current_status is not None:
            detail = f"{message} (current status: {current_status})"
        super().__init__(detail)

    def to_dict(self) -> dict:
        body = {'message': str(self), 'currentStatus': self.current_status}
        if self.allowed_statuses:
            body['allowedStatuses'] = self.allowed_statuses
        return body


class PermissionDenied(PreconditionFailed):
    """The actor's role (or identity) may not perform this action."""

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        current_status: Optional[str] = None,
        expected_roles: Optional[Iterable[str]] = None,
    ):
        self.role = role
        self.expected_roles = sorted(expected_roles or [])
        super().__init__(message, current_status=current_status)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body['receivedRole'] = self.role
        if self.expected_roles:
            body['expectedRoles'] = self.expected_roles
        return body


class ValidationError(ReviewFlowError):
    """Input payload is missing required fields or has invalid values."""


class PersistenceFailure(ReviewFlowError):
    """A storage write failed. Safe to retry; no partial state was written."""

    retryable = True


class VersionConflict(ReviewFlowError):
    """A compare-and-set lost a race. Handled inside the engine by retrying."""


class LockHeld(PreconditionFailed):
    """Another caller holds the advisory lock for a serialized operation."""

    def __init__(self, name: str):
        self.lock_name = name
        super().__init__(f"{name} is already running")
