from app.models.workflow_item import WorkflowItem, ItemKind, WorkflowStatus, WorkflowAction
from app.models.transition_record import TransitionRecord
from app.models.user_role import ActorRole

__all__ = [
    "WorkflowItem",
    "ItemKind",
    "WorkflowStatus",
    "WorkflowAction",
    "TransitionRecord",
    "ActorRole",
]
