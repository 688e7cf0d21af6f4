"""Progress view derived from a CR's approval log and assignments."""
from typing import Optional

from .models import ApprovalAction, CRStatus, Role
from .schemas import (
    ApprovalLogRecord,
    AssignmentRecord,
    ChangeRequestRecord,
    ProgressStep,
    ProgressView,
)

MILESTONES = (
    "Draft",
    "Submit to Manager",
    "Manager Approval",
    "VP Approval",
    "Assigned to Developer",
    "Completed",
)


def _first(logs: list[ApprovalLogRecord], actions: tuple, role: Optional[Role] = None) -> Optional[ApprovalLogRecord]:
    for log in logs:
        if log.action in actions and (role is None or log.approver_role == role):
            return log
    return None


def build_progress(
    cr: ChangeRequestRecord,
    logs: list[ApprovalLogRecord],
    assignments: list[AssignmentRecord],
) -> ProgressView:
    """
    Project a CR onto the six workflow milestones.

    Each milestone is completed by the first matching log entry (or the
    first assignment, or the COMPLETED status). The first milestone still
    pending is marked current; a completed CR has no current milestone.

    Args:
        cr: Change request snapshot
        logs: Approval log in creation order
        assignments: Developer assignments

    Returns:
        ProgressView with steps in workflow order
    """
    steps = [ProgressStep(step=i + 1, name=name) for i, name in enumerate(MILESTONES)]

    draft, submitted, manager, vp, assigned, completed = steps

    draft.status = "completed"
    draft.timestamp = cr.created_at

    submit_log = _first(logs, (ApprovalAction.SUBMIT, ApprovalAction.RESUBMIT))
    if submit_log:
        submitted.status = "completed"
        submitted.timestamp = submit_log.created_at

    manager_log = _first(logs, (ApprovalAction.APPROVE,), Role.MANAGER)
    if manager_log:
        manager.status = "completed"
        manager.timestamp = manager_log.created_at
        manager.approver = manager_log.approver_name

    vp_log = _first(logs, (ApprovalAction.APPROVE,), Role.VP)
    if vp_log:
        vp.status = "completed"
        vp.timestamp = vp_log.created_at
        vp.approver = vp_log.approver_name

    if assignments:
        assigned.status = "completed"
        assigned.timestamp = assignments[0].assigned_at
        assigned.developers = [a.developer_name or a.developer_id for a in assignments]

    if cr.status == CRStatus.COMPLETED:
        completed.status = "completed"
        completed.timestamp = cr.updated_at

    for step in steps:
        if step.status == "pending":
            step.status = "current"
            break

    return ProgressView(cr_id=cr.id, current_status=cr.status, steps=steps)
