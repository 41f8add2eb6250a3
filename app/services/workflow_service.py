import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import (
    ConcurrentModificationError,
    ConflictError,
    ForbiddenActorError,
    PartialFailureError,
    StoreUnavailableError,
    TransitionRejected,
)
from app.core.metrics import (
    CAS_CONFLICTS,
    ITEM_OPERATIONS,
    PARTIAL_FAILURES,
    REJECTED_TRANSITIONS,
    STATUS_TRANSITIONS,
)
from app.core.permissions import INITIAL_STATUS, TransitionDecision, can_transition, is_reviewer
from app.models.transition_record import TransitionRecord
from app.models.user_role import ActorRole
from app.models.workflow_item import ItemKind, WorkflowAction, WorkflowItem
from app.services.audit_log import AuditLog, verify_chain
from app.services.item_store import ItemStore

logger = logging.getLogger(__name__)

RECONCILE_ACTION = "reconcile"
RECONCILE_REASON = "reconciled"


@dataclass
class TransitionResult:
    """Outcome of ``request_transition``.

    Either ``item`` and ``record`` are set, or ``error`` holds the rejection.
    """
    item: Optional[WorkflowItem] = None
    record: Optional[TransitionRecord] = None
    error: Optional[TransitionRejected] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkflowService:
    """The only entry point that changes the status of a workflow item."""

    def __init__(self, store: ItemStore, audit_log: AuditLog):
        self.store = store
        self.audit_log = audit_log

    def create_item(self, kind: ItemKind, owner_id: str, title: str) -> WorkflowItem:
        kind = ItemKind(kind)
        ITEM_OPERATIONS.labels(operation="create").inc()
        item = self.store.create(kind, owner_id, INITIAL_STATUS[kind], title.strip())
        logger.info("created %s %s for %s in status %s", kind.value, item.id, owner_id, item.status.value)
        return item

    def _decide(
        self,
        item: WorkflowItem,
        actor_id: str,
        actor_role: str | ActorRole,
        action: str | WorkflowAction,
        reason: Optional[str],
    ) -> TransitionDecision:
        return can_transition(
            item.kind,
            item.status,
            action,
            actor_role,
            is_owner=item.owner_id == actor_id,
            reason=reason,
        )

    def request_transition(
        self,
        item_id: str,
        actor_id: str,
        actor_role: str | ActorRole,
        action: str | WorkflowAction,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        item = self.store.get(item_id)
        kind = item.kind
        decision = self._decide(item, actor_id, actor_role, action, reason)
        if not decision.allowed:
            decision.error.item_id = item_id
            REJECTED_TRANSITIONS.labels(kind=kind.value, error=decision.error.kind).inc()
            logger.warning("transition refused for item %s by %s: %s", item_id, actor_id, decision.error.message)
            return TransitionResult(error=decision.error)

        from_status = item.status
        try:
            item = self.store.update_status(item_id, from_status, decision.next_status)
        except ConflictError:
            CAS_CONFLICTS.labels(kind=kind.value).inc()
            logger.warning("item %s changed while %s was applying '%s'; retrying once", item_id, actor_id, getattr(action, "value", action))
            item, from_status, decision = self._retry_after_conflict(item_id, actor_id, actor_role, action, reason)

        # status and record go out in one commit
        try:
            record = self.audit_log.append(
                item_id,
                actor_id,
                from_status,
                decision.next_status,
                getattr(action, "value", action),
                reason=reason.strip() if reason else None,
                commit=False,
            )
        except StoreUnavailableError as e:
            self.store.rollback()
            logger.error("audit append for item %s failed, status change rolled back: %s", item_id, e)
            raise

        try:
            self.store.commit()
        except SQLAlchemyError as e:
            self.store.rollback()
            self._raise_for_failed_commit(item_id, from_status, decision.next_status, e)

        STATUS_TRANSITIONS.labels(
            kind=kind.value,
            from_status=from_status.value,
            to_status=decision.next_status.value,
        ).inc()
        logger.info(
            "item %s: %s -> %s by %s (record %s)",
            item_id, from_status.value, decision.next_status.value, actor_id, record.id,
        )
        return TransitionResult(item=item, record=record)

    def _retry_after_conflict(self, item_id, actor_id, actor_role, action, reason):
        item = self.store.get(item_id)
        decision = self._decide(item, actor_id, actor_role, action, reason)
        if not decision.allowed:
            # the move that beat us is what made this request invalid
            raise ConcurrentModificationError(
                f"Item {item_id} was changed concurrently and is now {item.status.value}: "
                f"{decision.error.message}",
                item_id=item_id,
            )
        from_status = item.status
        try:
            item = self.store.update_status(item_id, from_status, decision.next_status)
        except ConflictError as e:
            CAS_CONFLICTS.labels(kind=item.kind.value).inc()
            raise ConcurrentModificationError(
                f"Item {item_id} kept changing concurrently; re-read it and try again",
                item_id=item_id,
            ) from e
        return item, from_status, decision

    def _raise_for_failed_commit(self, item_id, from_status, to_status, cause):
        """Tell a lost commit apart from one that landed only the status.

        A commit can fail after the database applied part of it, e.g. when
        the connection drops during COMMIT. Re-read both sides: a status that
        moved without its record is a partial failure.
        """
        item = self.store.get(item_id)
        records = self.audit_log.records_for(item_id)
        tail = records[-1].to_status if records else item.initial_status
        if item.status == to_status and tail != to_status:
            PARTIAL_FAILURES.labels(kind=item.kind.value).inc()
            logger.critical(
                "item %s moved %s -> %s but its audit record was lost: %s",
                item_id, from_status.value, to_status.value, cause,
            )
            raise PartialFailureError(item_id, from_status, to_status, cause=cause) from cause
        raise StoreUnavailableError(
            f"Could not commit transition of item {item_id}: {cause}", item_id=item_id,
        ) from cause

    def reconcile(self, item_id: str, actor_id: str, actor_role: str | ActorRole) -> Optional[TransitionRecord]:
        """Append the record a partial failure left out.

        Returns None when the history already ends at the current status.
        A chain broken in the middle cannot be repaired this way and raises
        CorruptHistoryError.
        """
        if not is_reviewer(actor_role):
            raise ForbiddenActorError(
                "Only an admin can reconcile item history",
                action=RECONCILE_ACTION,
                required="role admin",
                item_id=item_id,
            )
        ITEM_OPERATIONS.labels(operation="reconcile").inc()
        item = self.store.get(item_id)
        tail = verify_chain(item, self.audit_log.records_for(item_id))
        if tail == item.status:
            return None

        record = self.audit_log.append(
            item_id, actor_id, tail, item.status, RECONCILE_ACTION, reason=RECONCILE_REASON,
        )
        logger.warning(
            "reconciled history of item %s: appended %s -> %s (record %s)",
            item_id, tail.value, item.status.value, record.id,
        )
        return record
