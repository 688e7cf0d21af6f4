"""Role-based visibility and ownership rules for change requests.

Read access and write access are separate predicates:
- ``can_view`` decides visibility from the CR snapshot and the actor alone
- ``is_owner`` gates every requester-side mutation regardless of visibility

Role dispatch is an explicit chain over the closed ``Role`` enum. A role
without a branch is a programming error and raises instead of silently
denying.
"""
import logging
from typing import NamedTuple, Optional

from .errors import ForbiddenError
from .models import CRStatus, Role
from .schemas import ChangeRequestRecord, UserRecord

logger = logging.getLogger("crflow-core.access")


# Statuses a VP may see on CRs they do not own (reached manager approval)
VP_VISIBLE_STATUSES = frozenset({
    CRStatus.PENDING_VP,
    CRStatus.REJECTED_VP,
    CRStatus.REVISION_VP,
    CRStatus.APPROVED,
    CRStatus.ASSIGNED_DEV,
    CRStatus.COMPLETED,
})

# Statuses an IT manager may see (reached VP approval)
MANAGER_IT_VISIBLE_STATUSES = frozenset({
    CRStatus.APPROVED,
    CRStatus.ASSIGNED_DEV,
    CRStatus.COMPLETED,
})

LISTABLE_STATUSES = frozenset(s for s in CRStatus if s != CRStatus.DELETED)


class ListScope(NamedTuple):
    """Row filter for collection queries, built from an actor's role.

    ``statuses`` is never None: an empty set means the query matches nothing.
    """

    statuses: frozenset
    owner_id: Optional[str] = None
    division: Optional[str] = None
    developer_id: Optional[str] = None


def _unhandled_role(role: Role) -> Exception:
    return ValueError(f"No access rule defined for role {role!r}")


def is_owner(cr: ChangeRequestRecord, actor: UserRecord) -> bool:
    return cr.owner_id == actor.id


def can_view(cr: ChangeRequestRecord, actor: UserRecord) -> bool:
    """
    Decide whether ``actor`` may read ``cr``.

    Pure function of its arguments; no store access.

    Args:
        cr: Change request snapshot (with owner division and assigned developers)
        actor: Acting user

    Returns:
        True if the CR is visible to the actor
    """
    # Deleted CRs stay visible to their owner only
    if cr.status == CRStatus.DELETED:
        return is_owner(cr, actor)

    role = actor.role
    if role == Role.USER:
        return is_owner(cr, actor)
    elif role == Role.MANAGER:
        return cr.owner_division is not None and cr.owner_division == actor.division
    elif role == Role.VP:
        return cr.status in VP_VISIBLE_STATUSES or is_owner(cr, actor)
    elif role == Role.MANAGER_IT:
        return cr.status in MANAGER_IT_VISIBLE_STATUSES
    elif role == Role.DEV:
        return actor.id in cr.developer_ids
    raise _unhandled_role(role)


def require_view(cr: ChangeRequestRecord, actor: UserRecord) -> None:
    """Raise ForbiddenError unless ``actor`` can view ``cr``."""
    if not can_view(cr, actor):
        logger.warning(f"User {actor.id} ({actor.role.value}) denied view of {cr.id}")
        raise ForbiddenError(
            "You do not have access to this change request",
            action="view",
            current_role=actor.role,
        )


def require_owner(cr: ChangeRequestRecord, actor: UserRecord, action: str) -> None:
    """Raise ForbiddenError unless ``actor`` created ``cr``."""
    if not is_owner(cr, actor):
        logger.warning(f"User {actor.id} denied {action} on {cr.id}: not the owner")
        raise ForbiddenError(
            f"Only the creator of a change request can {action} it",
            action=action,
            current_role=actor.role,
        )


def require_role(actor: UserRecord, required: Role, action: str) -> None:
    """Raise ForbiddenError unless ``actor`` holds ``required``."""
    if actor.role != required:
        raise ForbiddenError(
            f"Only {required.value} can {action}",
            action=action,
            current_role=actor.role,
            required_role=required,
        )


def require_same_division(cr: ChangeRequestRecord, actor: UserRecord, action: str) -> None:
    """Raise ForbiddenError unless the manager shares the CR owner's division."""
    if cr.owner_division is None or cr.owner_division != actor.division:
        logger.warning(f"Manager {actor.id} denied {action} on {cr.id}: division mismatch")
        raise ForbiddenError(
            f"You cannot {action} change requests from another division",
            action=action,
            current_role=actor.role,
            required_role=Role.MANAGER,
        )


def allowed_statuses_for(role: Role) -> frozenset:
    """Statuses a role may list (before row-level ownership/division filters)."""
    if role in (Role.USER, Role.MANAGER, Role.DEV):
        return LISTABLE_STATUSES
    elif role == Role.VP:
        return VP_VISIBLE_STATUSES
    elif role == Role.MANAGER_IT:
        return MANAGER_IT_VISIBLE_STATUSES
    raise _unhandled_role(role)


def build_list_scope(actor: UserRecord, status: Optional[CRStatus] = None) -> ListScope:
    """
    Build the collection filter for an actor.

    A requested status outside the role's allowed set yields an empty status
    set (empty result), not an error.

    Args:
        actor: Acting user
        status: Optional status filter requested by the caller

    Returns:
        ListScope to hand to the store
    """
    statuses = allowed_statuses_for(actor.role)
    if status is not None:
        statuses = statuses & {status}

    role = actor.role
    if role == Role.USER:
        return ListScope(statuses=statuses, owner_id=actor.id)
    elif role == Role.MANAGER:
        if actor.division is None:
            return ListScope(statuses=frozenset())
        return ListScope(statuses=statuses, division=actor.division)
    elif role == Role.VP or role == Role.MANAGER_IT:
        return ListScope(statuses=statuses)
    elif role == Role.DEV:
        return ListScope(statuses=statuses, developer_id=actor.id)
    raise _unhandled_role(role)
