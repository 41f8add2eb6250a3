from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple
from app.core.errors import (
    ForbiddenActorError,
    IllegalTransitionError,
    MissingReasonError,
    NoOpError,
    TransitionRejected,
)
from app.models.workflow_item import ItemKind, WorkflowAction, WorkflowStatus
from app.models.user_role import ActorRole


def _to_actor_role(role: str | ActorRole | None) -> Optional[ActorRole]:
    """Convert a string to ActorRole, None if it is not a known role."""
    if isinstance(role, ActorRole):
        return role
    try:
        return ActorRole(role)
    except ValueError:
        return None


def _to_action(action: str | WorkflowAction) -> Optional[WorkflowAction]:
    if isinstance(action, WorkflowAction):
        return action
    try:
        return WorkflowAction(action)
    except ValueError:
        return None


@dataclass(frozen=True)
class TransitionRule:
    from_statuses: FrozenSet[WorkflowStatus]
    to_status: WorkflowStatus
    allowed_roles: FrozenSet[ActorRole] = frozenset()
    owner_only: bool = False
    requires_reason: bool = False

    def describe_actor(self) -> str:
        if self.owner_only:
            return "item owner"
        return "role " + " or ".join(sorted(r.value for r in self.allowed_roles))


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    next_status: Optional[WorkflowStatus] = None
    error: Optional[TransitionRejected] = None


REVIEWER_ROLES = frozenset({ActorRole.ADMIN})

INITIAL_STATUS = {
    ItemKind.STORY_IDEA: WorkflowStatus.DRAFT,
    ItemKind.TEACHER_REQUEST: WorkflowStatus.PENDING,
}

KIND_STATUSES = {
    ItemKind.STORY_IDEA: frozenset(WorkflowStatus),
    ItemKind.TEACHER_REQUEST: frozenset({
        WorkflowStatus.PENDING,
        WorkflowStatus.APPROVED,
        WorkflowStatus.REJECTED,
    }),
}

TRANSITION_RULES: Dict[Tuple[ItemKind, WorkflowAction], TransitionRule] = {
    (ItemKind.STORY_IDEA, WorkflowAction.SUBMIT): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.DRAFT}),
        to_status=WorkflowStatus.PENDING,
        owner_only=True,
    ),
    (ItemKind.STORY_IDEA, WorkflowAction.APPROVE): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PENDING}),
        to_status=WorkflowStatus.APPROVED,
        allowed_roles=REVIEWER_ROLES,
    ),
    (ItemKind.STORY_IDEA, WorkflowAction.REJECT): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PENDING}),
        to_status=WorkflowStatus.REJECTED,
        allowed_roles=REVIEWER_ROLES,
        requires_reason=True,
    ),
    (ItemKind.STORY_IDEA, WorkflowAction.RESUBMIT): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.REJECTED}),
        to_status=WorkflowStatus.PENDING,
        owner_only=True,
    ),
    (ItemKind.STORY_IDEA, WorkflowAction.REOPEN): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.APPROVED}),
        to_status=WorkflowStatus.PENDING,
        allowed_roles=REVIEWER_ROLES,
        requires_reason=True,
    ),
    (ItemKind.TEACHER_REQUEST, WorkflowAction.APPROVE): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PENDING}),
        to_status=WorkflowStatus.APPROVED,
        allowed_roles=REVIEWER_ROLES,
    ),
    (ItemKind.TEACHER_REQUEST, WorkflowAction.REJECT): TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PENDING}),
        to_status=WorkflowStatus.REJECTED,
        allowed_roles=REVIEWER_ROLES,
    ),
}


def is_reviewer(role: str | ActorRole | None) -> bool:
    return _to_actor_role(role) in REVIEWER_ROLES


def can_view_item(actor_id: str, actor_role: str | ActorRole | None, item) -> bool:
    if is_reviewer(actor_role):
        return True
    return item.owner_id == actor_id


def can_transition(
    kind: ItemKind,
    current_status: WorkflowStatus,
    action: str | WorkflowAction,
    actor_role: str | ActorRole | None,
    is_owner: bool = False,
    reason: Optional[str] = None,
) -> TransitionDecision:
    """Decide whether ``action`` may move an item of ``kind`` out of ``current_status``.

    Pure function: rejections come back inside the decision, nothing is raised.
    The actor check runs before any state check, so an actor without the
    required role is refused whatever state the item is in.
    """
    kind = ItemKind(kind)
    wanted = _to_action(action)
    rule = TRANSITION_RULES.get((kind, wanted)) if wanted else None
    if rule is None:
        supported = sorted(a.value for (k, a) in TRANSITION_RULES if k == kind)
        return TransitionDecision(
            allowed=False,
            error=IllegalTransitionError(
                f"Action '{getattr(action, 'value', action)}' does not exist for {kind.value}; "
                f"supported actions: {', '.join(supported)}",
                current_status=current_status,
                action=action,
            ),
        )

    role = _to_actor_role(actor_role)
    if rule.owner_only:
        actor_ok = is_owner
    else:
        actor_ok = role in rule.allowed_roles
    if not actor_ok:
        return TransitionDecision(
            allowed=False,
            error=ForbiddenActorError(
                f"Only the {rule.describe_actor()} can {wanted.value} a {kind.value}",
                current_status=current_status,
                action=wanted,
                required=rule.describe_actor(),
            ),
        )

    if current_status == rule.to_status:
        return TransitionDecision(
            allowed=False,
            error=NoOpError(
                f"{kind.value} is already {current_status.value}; '{wanted.value}' would change nothing",
                current_status=current_status,
                action=wanted,
            ),
        )

    if current_status not in rule.from_statuses:
        expected = ", ".join(sorted(s.value for s in rule.from_statuses))
        return TransitionDecision(
            allowed=False,
            error=IllegalTransitionError(
                f"Cannot {wanted.value} a {kind.value} in status {current_status.value}; "
                f"it must be {expected}",
                current_status=current_status,
                action=wanted,
                required=f"status {expected}",
            ),
        )

    if rule.requires_reason and not (reason and reason.strip()):
        return TransitionDecision(
            allowed=False,
            error=MissingReasonError(
                f"A reason is required to {wanted.value} a {kind.value}",
                current_status=current_status,
                action=wanted,
                required="non-empty reason",
            ),
        )

    return TransitionDecision(allowed=True, next_status=rule.to_status)
