from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from app.models.workflow_item import ItemKind, WorkflowStatus


class ItemCreate(BaseModel):
    kind: ItemKind
    title: str = Field(..., min_length=1, max_length=200, description="Story idea title or the requesting teacher's name")


class TransitionRequest(BaseModel):
    """Optional body for POST /items/{id}/{action}."""

    reason: Optional[str] = Field(None, max_length=2000, description="Required to reject or reopen a story idea")


class WorkflowItemResponse(BaseModel):
    id: str
    kind: ItemKind
    title: str
    status: WorkflowStatus
    initial_status: WorkflowStatus = Field(alias="initialStatus")
    owner_id: str = Field(alias="ownerId")
    created_at: datetime = Field(alias="createdAt")
    last_transition_at: datetime = Field(alias="lastTransitionAt")

    model_config = {"from_attributes": True, "populate_by_name": True}


class WorkflowItemsResponse(BaseModel):
    items: List[WorkflowItemResponse]


class TransitionRecordResponse(BaseModel):
    id: int
    item_id: str = Field(alias="itemId")
    actor_id: str = Field(alias="actorId")
    from_status: WorkflowStatus = Field(alias="fromStatus")
    to_status: WorkflowStatus = Field(alias="toStatus")
    action: str
    reason: Optional[str] = None
    occurred_at: datetime = Field(alias="occurredAt")

    model_config = {"from_attributes": True, "populate_by_name": True}


class TransitionResponse(BaseModel):
    item: WorkflowItemResponse
    record: TransitionRecordResponse


class ItemHistoryResponse(BaseModel):
    records: List[TransitionRecordResponse]
    current_status: WorkflowStatus = Field(alias="currentStatus")

    model_config = {"populate_by_name": True}


# --- Task queue (GET /my-tasks) ---


class TaskItem(BaseModel):
    id: str
    item_id: str = Field(alias="itemId")
    item_title: str = Field(alias="itemTitle")
    kind: ItemKind
    task_type: str = Field(alias="taskType")
    description: str
    last_transition_at: datetime = Field(alias="lastTransitionAt")

    model_config = {"populate_by_name": True}


class TaskGroup(BaseModel):
    task_type: str = Field(alias="taskType")
    title: str
    description: str
    count: int
    tasks: List[TaskItem]

    model_config = {"populate_by_name": True}


class MyTasksResponse(BaseModel):
    total_tasks: int = Field(alias="totalTasks")
    task_groups: List[TaskGroup] = Field(alias="taskGroups")

    model_config = {"populate_by_name": True}


class StatusCountsResponse(BaseModel):
    kind: ItemKind
    counts: Dict[str, int]
