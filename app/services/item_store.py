import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ItemNotFoundError, StoreUnavailableError
from app.models.workflow_item import ItemKind, WorkflowItem, WorkflowStatus

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemStore:
    """Current-state storage for workflow items."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, item_id: str) -> WorkflowItem:
        try:
            item = (
                self.db.query(WorkflowItem)
                .filter(WorkflowItem.id == item_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not load item {item_id}: {e}", item_id=item_id) from e
        if not item:
            raise ItemNotFoundError(item_id)
        return item

    def create(
        self,
        kind: ItemKind,
        owner_id: str,
        initial_status: WorkflowStatus,
        title: str,
        item_id: Optional[str] = None,
    ) -> WorkflowItem:
        now = utcnow()
        item = WorkflowItem(
            id=item_id or str(uuid4()),
            kind=kind,
            title=title,
            status=initial_status,
            initial_status=initial_status,
            owner_id=owner_id,
            created_at=now,
            last_transition_at=now,
        )
        try:
            self.db.add(item)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not create {kind.value}: {e}") from e
        self.db.refresh(item)
        return item

    def update_status(
        self,
        item_id: str,
        expected_status: WorkflowStatus,
        new_status: WorkflowStatus,
    ) -> WorkflowItem:
        """Move ``item_id`` to ``new_status`` only if it is still in ``expected_status``.

        The check and the write are one conditional UPDATE, so of two writers
        that read the same status only one can win. The loser gets
        ``ConflictError`` with its session rolled back, ready to re-read.

        Nothing is committed here: the caller commits the update together
        with its audit record. Until then the UPDATE holds the row lock and a
        rival writer waits on it.
        """
        try:
            updated = (
                self.db.query(WorkflowItem)
                .filter(
                    WorkflowItem.id == item_id,
                    WorkflowItem.status == expected_status,
                )
                .update(
                    {
                        WorkflowItem.status: new_status,
                        WorkflowItem.last_transition_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                self.db.rollback()
                raise ConflictError(item_id, expected_status)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError(f"Could not update item {item_id}: {e}", item_id=item_id) from e

        return self.get(item_id)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
