from sqlalchemy import Column, String, DateTime, Index, TypeDecorator
import enum
from typing import Type, TypeVar
from app.core.database import Base

EnumType = TypeVar('EnumType', bound=enum.Enum)

class EnumValueType(TypeDecorator):
    impl = String
    cache_ok = True

    def __init__(self, enum_class: Type[EnumType], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, self.enum_class):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None

        for member in self.enum_class:
            if member.value == value:
                return member

        raise ValueError(f"Invalid value '{value}' for enum {self.enum_class.__name__}")


class ItemKind(str, enum.Enum):
    STORY_IDEA = "story_idea"
    TEACHER_REQUEST = "teacher_request"


class WorkflowStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkflowAction(str, enum.Enum):
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    APPROVE = "approve"
    REJECT = "reject"
    REOPEN = "reopen"  # admin override out of approved


class WorkflowItem(Base):
    """Current-state snapshot of a story idea or teacher request.

    Only the workflow service changes ``status``; the history of every change
    lives in ``transition_records``.
    """
    __tablename__ = "workflow_items"

    id = Column(String, primary_key=True)
    kind = Column(EnumValueType(ItemKind), nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(EnumValueType(WorkflowStatus), nullable=False)
    initial_status = Column(EnumValueType(WorkflowStatus), nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_transition_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_workflow_items_status_last_transition', 'status', 'last_transition_at'),
    )

    def __repr__(self):
        return f"<WorkflowItem(id='{self.id}', kind='{self.kind}', status='{self.status}')>"
