from __future__ import annotations

import hashlib
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from app.core.database import Base
from app.models.workflow_item import EnumValueType, WorkflowStatus


class TransitionRecord(Base):
    """
    Immutable audit entry for one status change of a workflow item.

    This table is append-only: rows are never updated or deleted.
    Insertion order (``id``) is the authoritative order of the history.
    """
    __tablename__ = "transition_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(
        String,
        ForeignKey("workflow_items.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    from_status = Column(EnumValueType(WorkflowStatus), nullable=False)
    to_status = Column(EnumValueType(WorkflowStatus), nullable=False)
    action = Column(String, nullable=False)

    actor_id = Column(String, nullable=False)

    # Free text, mandatory for rejections of story ideas
    reason = Column(Text, nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False)

    # Guards against a retried append writing the same step twice
    idempotency_key = Column(String(64), nullable=False, unique=True)

    __table_args__ = (
        Index('ix_transition_records_item_id_id', 'item_id', 'id'),
    )

    def __repr__(self):
        return (
            f"<TransitionRecord(id={self.id}, item_id='{self.item_id}', "
            f"from='{self.from_status}', to='{self.to_status}')>"
        )

    @staticmethod
    def generate_idempotency_key(*parts: object) -> str:
        raw = "|".join("" if p is None else str(getattr(p, "value", p)) for p in parts)
        return hashlib.sha256(raw.encode('utf-8')).hexdigest()
