"""Role-specific dashboard statistics.

Every figure is computed within the actor's list scope, so a dashboard never
counts a CR its viewer could not open.
"""
import logging

from .access import build_list_scope
from .config import Settings
from .models import CRStatus, Role
from .schemas import ChangeRequestRecord, DashboardResponse, DashboardSummary, UserRecord
from .store import RecordStore

logger = logging.getLogger("crflow-core.dashboard")


def _summary(cr: ChangeRequestRecord) -> DashboardSummary:
    return DashboardSummary(
        id=cr.id,
        title=cr.title,
        status=cr.status,
        requester=cr.owner_name,
        division=cr.owner_division,
        created_at=cr.created_at,
        updated_at=cr.updated_at,
    )


def _sum(counts: dict[CRStatus, int], *statuses: CRStatus) -> int:
    return sum(counts.get(status, 0) for status in statuses)


def build_dashboard(store: RecordStore, actor: UserRecord, settings: Settings) -> DashboardResponse:
    """
    Build the dashboard for ``actor``.

    Args:
        store: Record store
        actor: Viewing user
        settings: Provides the list sizes

    Returns:
        DashboardResponse with role-specific stats and the CRs most relevant
        to the role (own recent CRs, or the queue waiting on the role)
    """
    scope = build_list_scope(actor)
    counts = store.count_by_status(scope)
    total = sum(counts.values())

    role = actor.role
    if role == Role.USER:
        stats = {
            "total": total,
            "draft": _sum(counts, CRStatus.DRAFT),
            "pending": _sum(counts, CRStatus.PENDING_MANAGER, CRStatus.PENDING_VP),
            "revision": _sum(counts, CRStatus.REVISION_MANAGER, CRStatus.REVISION_VP),
            "approved": _sum(counts, CRStatus.APPROVED),
            "rejected": _sum(counts, CRStatus.REJECTED_MANAGER, CRStatus.REJECTED_VP),
            "completed": _sum(counts, CRStatus.COMPLETED),
        }
        items, _ = store.list_crs(
            scope, sort_by="updated_at", sort_order="desc", limit=settings.dashboard_recent_limit
        )
    elif role == Role.MANAGER:
        stats = {
            "pending_approval": _sum(counts, CRStatus.PENDING_MANAGER),
            "total_division": total,
            "approved": _sum(counts, CRStatus.APPROVED),
            "rejected": _sum(counts, CRStatus.REJECTED_MANAGER, CRStatus.REJECTED_VP),
        }
        items, _ = store.list_crs(
            build_list_scope(actor, CRStatus.PENDING_MANAGER),
            sort_by="created_at", sort_order="asc", limit=settings.dashboard_pending_limit,
        )
    elif role == Role.VP:
        stats = {
            "pending_approval": _sum(counts, CRStatus.PENDING_VP),
            "total": total,
            "approved": _sum(counts, CRStatus.APPROVED),
            "assigned": _sum(counts, CRStatus.ASSIGNED_DEV),
            "completed": _sum(counts, CRStatus.COMPLETED),
        }
        items, _ = store.list_crs(
            build_list_scope(actor, CRStatus.PENDING_VP),
            sort_by="created_at", sort_order="asc", limit=settings.dashboard_pending_limit,
        )
    elif role == Role.MANAGER_IT:
        stats = {
            "need_mapping": _sum(counts, CRStatus.APPROVED),
            "assigned": _sum(counts, CRStatus.ASSIGNED_DEV),
            "completed": _sum(counts, CRStatus.COMPLETED),
        }
        items, _ = store.list_crs(
            build_list_scope(actor, CRStatus.APPROVED),
            sort_by="updated_at", sort_order="desc", limit=settings.dashboard_pending_limit,
        )
    elif role == Role.DEV:
        stats = {
            "assigned": total,
            "in_progress": _sum(counts, CRStatus.ASSIGNED_DEV),
            "completed": _sum(counts, CRStatus.COMPLETED),
        }
        items, _ = store.list_crs(
            scope, sort_by="updated_at", sort_order="desc", limit=settings.dashboard_pending_limit
        )
    else:
        raise ValueError(f"No dashboard defined for role {role!r}")

    logger.debug(f"Built {role.value} dashboard for {actor.id}: {stats}")
    return DashboardResponse(user=actor, stats=stats, items=[_summary(cr) for cr in items])
