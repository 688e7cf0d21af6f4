"""State machine for change request lifecycle transitions.

Enforces the fixed approval route:
- Requesters submit drafts to their division manager
- Managers approve to VP, reject (final) or send back for revision (max 3x)
- VPs approve to IT, reject (final) or send back for revision (max 2x)
- IT managers assign developers; IT managers or assigned developers complete

Status and current approver role are a denormalized pair. Both are always
derived from ``APPROVER_ROLE_BY_STATUS`` through ``status_patch`` so they can
never drift apart.
"""
import enum
import logging
from typing import NamedTuple, Optional

from .errors import PreconditionError
from .models import CRStatus, Role

logger = logging.getLogger("crflow-core.state_machine")


class CRAction(str, enum.Enum):
    """Workflow operations that may change a CR."""

    EDIT = "edit"
    DELETE = "delete"
    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"
    ASSIGN = "assign"
    COMPLETE = "complete"
    ATTACH = "attach"


class Transition(NamedTuple):
    """Outcome of an action: target status and the role allowed to perform it."""

    target: CRStatus
    actor_role: Optional[Role]  # None means the CR owner


# Whose action each status is waiting on. Statuses missing here map to None:
# drafts and revisions sit with the owner, terminal states with nobody.
APPROVER_ROLE_BY_STATUS: dict[CRStatus, Role] = {
    CRStatus.PENDING_MANAGER: Role.MANAGER,
    CRStatus.PENDING_VP: Role.VP,
    CRStatus.APPROVED: Role.MANAGER_IT,
}

# Revision cycles allowed per approval stage
REVISION_LIMITS: dict[Role, int] = {
    Role.MANAGER: 3,
    Role.VP: 2,
}

# Revision status for each approval stage and the counter it consumes
REVISION_STATUS_BY_STAGE: dict[Role, CRStatus] = {
    Role.MANAGER: CRStatus.REVISION_MANAGER,
    Role.VP: CRStatus.REVISION_VP,
}
REVISION_COUNTER_BY_STAGE: dict[Role, str] = {
    Role.MANAGER: "manager_revision_count",
    Role.VP: "vp_revision_count",
}

EDITABLE_STATUSES = frozenset({
    CRStatus.DRAFT,
    CRStatus.REVISION_MANAGER,
    CRStatus.REVISION_VP,
})

TERMINAL_STATUSES = frozenset({
    CRStatus.REJECTED_MANAGER,
    CRStatus.REJECTED_VP,
    CRStatus.COMPLETED,
    CRStatus.DELETED,
})


# Transition matrix
# Maps (current status, action) → target status and acting role
TRANSITION_MATRIX: dict[tuple[CRStatus, CRAction], Transition] = {
    (CRStatus.DRAFT, CRAction.EDIT): Transition(CRStatus.DRAFT, None),
    (CRStatus.DRAFT, CRAction.ATTACH): Transition(CRStatus.DRAFT, None),
    (CRStatus.DRAFT, CRAction.DELETE): Transition(CRStatus.DELETED, None),
    (CRStatus.DRAFT, CRAction.SUBMIT): Transition(CRStatus.PENDING_MANAGER, None),

    (CRStatus.PENDING_MANAGER, CRAction.APPROVE): Transition(CRStatus.PENDING_VP, Role.MANAGER),
    (CRStatus.PENDING_MANAGER, CRAction.REJECT): Transition(CRStatus.REJECTED_MANAGER, Role.MANAGER),
    (CRStatus.PENDING_MANAGER, CRAction.REQUEST_REVISION): Transition(CRStatus.REVISION_MANAGER, Role.MANAGER),

    (CRStatus.REVISION_MANAGER, CRAction.EDIT): Transition(CRStatus.REVISION_MANAGER, None),
    (CRStatus.REVISION_MANAGER, CRAction.ATTACH): Transition(CRStatus.REVISION_MANAGER, None),
    (CRStatus.REVISION_MANAGER, CRAction.RESUBMIT): Transition(CRStatus.PENDING_MANAGER, None),

    (CRStatus.PENDING_VP, CRAction.APPROVE): Transition(CRStatus.APPROVED, Role.VP),
    (CRStatus.PENDING_VP, CRAction.REJECT): Transition(CRStatus.REJECTED_VP, Role.VP),
    (CRStatus.PENDING_VP, CRAction.REQUEST_REVISION): Transition(CRStatus.REVISION_VP, Role.VP),

    (CRStatus.REVISION_VP, CRAction.EDIT): Transition(CRStatus.REVISION_VP, None),
    (CRStatus.REVISION_VP, CRAction.ATTACH): Transition(CRStatus.REVISION_VP, None),
    # VP-requested revisions go back to the VP, not to the manager
    (CRStatus.REVISION_VP, CRAction.RESUBMIT): Transition(CRStatus.PENDING_VP, None),

    (CRStatus.APPROVED, CRAction.ASSIGN): Transition(CRStatus.ASSIGNED_DEV, Role.MANAGER_IT),

    # Assigned developers may also complete; checked against assignments
    (CRStatus.ASSIGNED_DEV, CRAction.COMPLETE): Transition(CRStatus.COMPLETED, Role.MANAGER_IT),
}


def approver_role_for(status: CRStatus) -> Optional[Role]:
    """Role whose action the given status is waiting on, if any."""
    return APPROVER_ROLE_BY_STATUS.get(status)


def status_patch(status: CRStatus) -> dict:
    """Build the column patch that moves a CR to ``status``.

    This is the only place status and current approver role are written.
    """
    return {"status": status, "current_approver_role": approver_role_for(status)}


def is_terminal(status: CRStatus) -> bool:
    """Check if a CR status is terminal (no further transitions)."""
    return status in TERMINAL_STATUSES


def is_editable(status: CRStatus) -> bool:
    return status in EDITABLE_STATUSES


def get_allowed_actions(current_status: CRStatus) -> list[CRAction]:
    """
    Get list of actions available from the current status.

    Args:
        current_status: Current CR status

    Returns:
        Actions in declaration order (empty for terminal statuses)
    """
    return [action for (status, action) in TRANSITION_MATRIX if status == current_status]


def validate_transition(current_status: CRStatus, action: CRAction) -> Transition:
    """
    Validate an action against the current status.

    Args:
        current_status: Current CR status
        action: Requested workflow action

    Returns:
        The matching transition

    Raises:
        PreconditionError: If the action is not allowed from this status
    """
    transition = TRANSITION_MATRIX.get((current_status, action))
    if transition is not None:
        logger.debug(f"Valid transition: {current_status.value} --{action.value}--> {transition.target.value}")
        return transition

    allowed = get_allowed_actions(current_status)
    allowed_names = [a.value for a in allowed]

    error_msg = f"Cannot {action.value.replace('_', ' ')} a change request in status {current_status.value}."
    if allowed_names:
        error_msg += f" From {current_status.value}, allowed actions are: {', '.join(allowed_names)}."

    # Add helpful guidance based on the attempted action
    if current_status == CRStatus.REJECTED_MANAGER or current_status == CRStatus.REJECTED_VP:
        error_msg += " Rejections are final. Create a new change request instead."
    elif current_status == CRStatus.DELETED:
        error_msg += " Deleted change requests cannot be modified."
    elif current_status == CRStatus.COMPLETED:
        error_msg += " Completed change requests are immutable."
    elif action in (CRAction.EDIT, CRAction.ATTACH) and current_status not in EDITABLE_STATUSES:
        error_msg += " Only drafts and change requests under revision can be edited."
    elif action == CRAction.DELETE:
        error_msg += " Only drafts can be deleted."

    logger.warning(f"Blocked transition: {error_msg}")
    raise PreconditionError(
        error_msg,
        current_status=current_status,
        allowed_actions=allowed_names,
    )


def check_revision_budget(current_status: CRStatus, stage: Role, used: int) -> None:
    """
    Ensure another revision cycle is available for an approval stage.

    Args:
        current_status: Current CR status (reported on failure)
        stage: Approval stage (MANAGER or VP)
        used: Revision cycles already consumed at this stage

    Raises:
        PreconditionError: If the stage's revision limit is reached
    """
    limit = REVISION_LIMITS[stage]
    if used >= limit:
        error_msg = (
            f"Change request has reached the maximum of {limit} revisions "
            f"from {stage.value}."
        )
        logger.warning(f"Blocked revision: {error_msg}")
        raise PreconditionError(
            error_msg,
            current_status=current_status,
            allowed_actions=[a.value for a in get_allowed_actions(current_status)],
            revision_count=used,
            revision_limit=limit,
        )

