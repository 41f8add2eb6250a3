from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from typing import Dict, Optional
import logging

from app.dependencies import get_current_user, get_workflow_queries, get_workflow_service
from app.schemas.workflow import (
    ItemCreate,
    ItemHistoryResponse,
    MyTasksResponse,
    StatusCountsResponse,
    TransitionRecordResponse,
    TransitionRequest,
    TransitionResponse,
    WorkflowItemResponse,
    WorkflowItemsResponse,
)
from app.models.workflow_item import ItemKind, WorkflowAction, WorkflowItem, WorkflowStatus
from app.core.metrics import ITEM_OPERATIONS
from app.core.notification_client import notification_client
from app.core.permissions import can_view_item, is_reviewer
from app.services.queries import WorkflowQueries
from app.services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter()

# reviewer decisions are reported back to the item owner
NOTIFY_ACTIONS = {WorkflowAction.APPROVE, WorkflowAction.REJECT, WorkflowAction.REOPEN}


def _require_admin(current_user: Dict) -> None:
    if not is_reviewer(current_user.get("role")):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This action is restricted to admins"
        )


def _get_visible_item_or_403(service: WorkflowService, item_id: str, current_user: Dict) -> WorkflowItem:
    item = service.store.get(item_id)
    if not can_view_item(current_user.get("id"), current_user.get("role"), item):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to view this item"
        )
    return item


@router.post("/items", response_model=WorkflowItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(
    body: ItemCreate,
    service: WorkflowService = Depends(get_workflow_service),
    current_user: Dict = Depends(get_current_user),
):
    item = service.create_item(body.kind, current_user["id"], body.title)
    return WorkflowItemResponse.model_validate(item)


@router.get("/items", response_model=WorkflowItemsResponse)
async def list_items(
    status_filter: WorkflowStatus = Query(..., alias="status"),
    kind: Optional[ItemKind] = None,
    queries: WorkflowQueries = Depends(get_workflow_queries),
    current_user: Dict = Depends(get_current_user),
):
    items = queries.list_by_status(status_filter, current_user["id"], current_user["role"], kind)
    return WorkflowItemsResponse(items=[WorkflowItemResponse.model_validate(i) for i in items])


@router.get("/my-tasks", response_model=MyTasksResponse)
async def get_my_tasks(
    queries: WorkflowQueries = Depends(get_workflow_queries),
    current_user: Dict = Depends(get_current_user),
):
    """Work waiting on the current user: reviews for admins, drafts and rejections for owners."""
    return queries.pending_tasks(current_user["id"], current_user["role"])


@router.get("/stats", response_model=StatusCountsResponse)
async def get_stats(
    kind: ItemKind = ItemKind.TEACHER_REQUEST,
    queries: WorkflowQueries = Depends(get_workflow_queries),
    current_user: Dict = Depends(get_current_user),
):
    _require_admin(current_user)
    return StatusCountsResponse(kind=kind, counts=queries.status_counts(kind))


@router.get("/items/{item_id}", response_model=WorkflowItemResponse)
async def get_item(
    item_id: str,
    service: WorkflowService = Depends(get_workflow_service),
    current_user: Dict = Depends(get_current_user),
):
    ITEM_OPERATIONS.labels(operation="get").inc()
    item = _get_visible_item_or_403(service, item_id, current_user)
    return WorkflowItemResponse.model_validate(item)


@router.get("/items/{item_id}/history", response_model=ItemHistoryResponse)
async def get_item_history(
    item_id: str,
    service: WorkflowService = Depends(get_workflow_service),
    queries: WorkflowQueries = Depends(get_workflow_queries),
    current_user: Dict = Depends(get_current_user),
):
    """Full transition history, oldest first. 500 if the stored chain is broken."""
    item = _get_visible_item_or_403(service, item_id, current_user)
    records = queries.history(item_id)
    return ItemHistoryResponse(
        records=[TransitionRecordResponse.model_validate(r) for r in records],
        currentStatus=item.status,
    )


@router.post("/items/{item_id}/reconcile", response_model=TransitionRecordResponse)
async def reconcile_item(
    item_id: str,
    service: WorkflowService = Depends(get_workflow_service),
    current_user: Dict = Depends(get_current_user),
):
    """Repair history after a partial failure. 204 when there is nothing to repair."""
    record = service.reconcile(item_id, current_user["id"], current_user["role"])
    if record is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return TransitionRecordResponse.model_validate(record)


@router.post("/items/{item_id}/{action}", response_model=TransitionResponse)
async def request_transition(
    item_id: str,
    action: WorkflowAction,
    body: Optional[TransitionRequest] = None,
    service: WorkflowService = Depends(get_workflow_service),
    current_user: Dict = Depends(get_current_user),
):
    result = service.request_transition(
        item_id,
        current_user["id"],
        current_user["role"],
        action,
        reason=body.reason if body else None,
    )
    if not result.ok:
        raise result.error

    if action in NOTIFY_ACTIONS:
        await notification_client.notify_transition(result.item, result.record)

    return TransitionResponse(
        item=WorkflowItemResponse.model_validate(result.item),
        record=TransitionRecordResponse.model_validate(result.record),
    )
