import logging
from typing import Dict, Iterator, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import CorruptHistoryError
from app.core.metrics import CORRUPT_HISTORIES, ITEM_OPERATIONS
from app.core.permissions import KIND_STATUSES, is_reviewer
from app.models.transition_record import TransitionRecord
from app.models.user_role import ActorRole
from app.models.workflow_item import ItemKind, WorkflowItem, WorkflowStatus
from app.schemas.workflow import TaskGroup, TaskItem
from app.services.audit_log import AuditLog, verify_chain
from app.services.item_store import ItemStore

logger = logging.getLogger(__name__)


class WorkflowQueries:
    """Read-only projections over items and their history."""

    def __init__(self, db: Session, batch_size: int = 100):
        self.db = db
        self.batch_size = batch_size

    def list_by_status(
        self,
        status: WorkflowStatus,
        actor_id: str,
        actor_role: str | ActorRole,
        kind: Optional[ItemKind] = None,
    ) -> Iterator[WorkflowItem]:
        """Yield items in ``status``, most recently moved first.

        Reviewers see every item, everyone else only the items they own.
        Each call runs a fresh query; nothing is cached between calls.
        """
        ITEM_OPERATIONS.labels(operation="list").inc()
        query = self.db.query(WorkflowItem).filter(WorkflowItem.status == WorkflowStatus(status))
        if kind is not None:
            query = query.filter(WorkflowItem.kind == ItemKind(kind))
        if not is_reviewer(actor_role):
            query = query.filter(WorkflowItem.owner_id == actor_id)

        query = query.order_by(
            WorkflowItem.last_transition_at.desc(),
            WorkflowItem.created_at.desc(),
            WorkflowItem.id,
        )
        yield from query.yield_per(self.batch_size)

    def history(self, item_id: str) -> List[TransitionRecord]:
        """Return the records of ``item_id`` oldest first, verified as one unbroken chain."""
        ITEM_OPERATIONS.labels(operation="history").inc()
        item = ItemStore(self.db).get(item_id)
        records = AuditLog(self.db).records_for(item_id)
        try:
            tail = verify_chain(item, records)
            if tail != item.status:
                raise CorruptHistoryError(
                    item_id,
                    f"History of item {item_id} ends at {tail.value} "
                    f"but the item is {item.status.value}",
                )
        except CorruptHistoryError as e:
            CORRUPT_HISTORIES.inc()
            logger.error("corrupt history for item %s: %s", item_id, e.message)
            raise
        return records

    def pending_tasks(self, actor_id: str, actor_role: str | ActorRole) -> Dict:
        """Work waiting on this actor, grouped by task type."""
        task_groups = []

        def group(task_type, title, description, items, task_description):
            if not items:
                return
            task_groups.append(TaskGroup(
                taskType=task_type,
                title=title,
                description=description,
                count=len(items),
                tasks=[TaskItem(
                    id=f"{task_type}_{i.id}",
                    itemId=i.id,
                    itemTitle=i.title,
                    kind=i.kind,
                    taskType=task_type,
                    description=task_description,
                    lastTransitionAt=i.last_transition_at,
                ) for i in items]
            ))

        if is_reviewer(actor_role):
            group(
                "review_story",
                "Review Stories",
                "Story ideas submitted and waiting for approval",
                list(self.list_by_status(WorkflowStatus.PENDING, actor_id, actor_role, ItemKind.STORY_IDEA)),
                "Approve or reject story idea",
            )
            group(
                "review_teacher_request",
                "Review Teacher Requests",
                "Teacher registration requests waiting for a decision",
                list(self.list_by_status(WorkflowStatus.PENDING, actor_id, actor_role, ItemKind.TEACHER_REQUEST)),
                "Approve or reject teacher request",
            )
        else:
            group(
                "submit_story",
                "Submit Drafts",
                "Draft story ideas ready to send for review",
                list(self.list_by_status(WorkflowStatus.DRAFT, actor_id, actor_role, ItemKind.STORY_IDEA)),
                "Submit story idea for review",
            )
            group(
                "revise_story",
                "Revise Rejected Stories",
                "Rejected story ideas that can be revised and resubmitted",
                list(self.list_by_status(WorkflowStatus.REJECTED, actor_id, actor_role, ItemKind.STORY_IDEA)),
                "Address the reviewer's reason and resubmit",
            )

        return {
            "totalTasks": sum(g.count for g in task_groups),
            "taskGroups": task_groups,
        }

    def status_counts(self, kind: ItemKind) -> Dict[str, int]:
        """Number of items of ``kind`` per status, plus ``total``."""
        kind = ItemKind(kind)
        rows = (
            self.db.query(WorkflowItem.status, func.count(WorkflowItem.id))
            .filter(WorkflowItem.kind == kind)
            .group_by(WorkflowItem.status)
            .all()
        )
        counts = {s.value: 0 for s in sorted(KIND_STATUSES[kind], key=list(WorkflowStatus).index)}
        for status, count in rows:
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts
