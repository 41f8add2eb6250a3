from app.schemas.workflow import (
    ItemCreate,
    TransitionRequest,
    WorkflowItemResponse,
    WorkflowItemsResponse,
    TransitionRecordResponse,
    TransitionResponse,
    ItemHistoryResponse,
    TaskItem,
    TaskGroup,
    MyTasksResponse,
    StatusCountsResponse,
)

__all__ = [
    "ItemCreate",
    "TransitionRequest",
    "WorkflowItemResponse",
    "WorkflowItemsResponse",
    "TransitionRecordResponse",
    "TransitionResponse",
    "ItemHistoryResponse",
    "TaskItem",
    "TaskGroup",
    "MyTasksResponse",
    "StatusCountsResponse",
]
