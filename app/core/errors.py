"""Error taxonomy for the approval workflow.

Validation outcomes (``TransitionRejected`` subclasses) are returned by the
workflow service inside a ``TransitionResult``; everything else is raised.
The HTTP layer turns any ``WorkflowError`` into a JSON response through
``workflow_error_handler``.
"""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


def _value(member: Any) -> Any:
    return member.value if hasattr(member, "value") else member


class WorkflowError(Exception):
    """Base class for every error the workflow core reports."""

    kind = "workflow_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, item_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.item_id = item_id

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.item_id is not None:
            detail["itemId"] = self.item_id
        return detail


class ItemNotFoundError(WorkflowError):
    kind = "not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, item_id: str):
        super().__init__(f"Workflow item {item_id} not found", item_id=item_id)


class StoreUnavailableError(WorkflowError):
    kind = "store_unavailable"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR


class ConflictError(WorkflowError):
    """Conditional status update lost against a concurrent writer."""

    kind = "conflict"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, item_id: str, expected_status: Any):
        super().__init__(
            f"Item {item_id} is no longer in status {_value(expected_status)}",
            item_id=item_id,
        )
        self.expected_status = expected_status


class ConcurrentModificationError(WorkflowError):
    kind = "concurrent_modification"
    http_status = status.HTTP_409_CONFLICT


class PartialFailureError(WorkflowError):
    """Status changed but the audit record could not be written."""

    kind = "partial_failure"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, item_id: str, from_status: Any, to_status: Any, cause: Optional[Exception] = None):
        super().__init__(
            f"Item {item_id} moved from {_value(from_status)} to {_value(to_status)} "
            f"but the audit record was not written; reconcile its history",
            item_id=item_id,
        )
        self.from_status = from_status
        self.to_status = to_status
        self.cause = cause

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["fromStatus"] = _value(self.from_status)
        detail["toStatus"] = _value(self.to_status)
        return detail


class CorruptHistoryError(WorkflowError):
    kind = "corrupt_history"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, item_id: str, message: str, record_id: Optional[int] = None):
        super().__init__(message, item_id=item_id)
        self.record_id = record_id

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        if self.record_id is not None:
            detail["recordId"] = self.record_id
        return detail


class TransitionRejected(WorkflowError):
    """A requested transition that the state machine refuses."""

    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        current_status: Any = None,
        action: Any = None,
        required: Optional[str] = None,
        item_id: Optional[str] = None,
    ):
        super().__init__(message, item_id=item_id)
        self.current_status = current_status
        self.action = action
        self.required = required

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["currentStatus"] = _value(self.current_status)
        detail["action"] = _value(self.action)
        if self.required:
            detail["required"] = self.required
        return detail


class IllegalTransitionError(TransitionRejected):
    kind = "illegal_transition"


class ForbiddenActorError(TransitionRejected):
    kind = "forbidden_actor"
    http_status = status.HTTP_403_FORBIDDEN


class MissingReasonError(TransitionRejected):
    kind = "missing_reason"


class NoOpError(TransitionRejected):
    kind = "no_op"


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})
