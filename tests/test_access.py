"""Tests for role-based visibility and list scoping."""
from datetime import datetime

import pytest

from crflow_core.access import (
    LISTABLE_STATUSES,
    VP_VISIBLE_STATUSES,
    build_list_scope,
    can_view,
    require_owner,
    require_view,
)
from crflow_core.errors import ForbiddenError
from crflow_core.models import CRStatus, Role
from crflow_core.schemas import ChangeRequestRecord, UserRecord

NOW = datetime(2026, 10, 19, 9, 0, 0)


def make_user(user_id: str, role: Role, division=None) -> UserRecord:
    return UserRecord(id=user_id, email=f"{user_id}@example.com", name=user_id, role=role, division=division)


def make_cr(status=CRStatus.PENDING_MANAGER, owner_id="alice", division="Finance", developers=()) -> ChangeRequestRecord:
    return ChangeRequestRecord(
        id="CR-2026-10-000001",
        owner_id=owner_id,
        owner_division=division,
        form_data={},
        title="Upgrade payroll export",
        status=status,
        developer_ids=frozenset(developers),
        created_at=NOW,
        updated_at=NOW,
    )


ALICE = make_user("alice", Role.USER, "Finance")
CAROL = make_user("carol", Role.USER, "Finance")
MANAGER = make_user("bob", Role.MANAGER, "Finance")
HR_MANAGER = make_user("hana", Role.MANAGER, "HR")
VP = make_user("victor", Role.VP)
IT_MANAGER = make_user("ivan", Role.MANAGER_IT)
DEV = make_user("dana", Role.DEV)


class TestCanView:
    """Test the visibility predicate."""

    def test_users_see_only_their_own(self):
        cr = make_cr()
        assert can_view(cr, ALICE)
        assert not can_view(cr, CAROL)

    def test_managers_see_their_division(self):
        cr = make_cr(CRStatus.DRAFT)
        assert can_view(cr, MANAGER)
        assert not can_view(cr, HR_MANAGER)

    def test_manager_without_division_sees_nothing(self):
        assert not can_view(make_cr(division=None), make_user("m", Role.MANAGER, None))

    def test_vp_sees_crs_past_manager_approval(self):
        for status in CRStatus:
            if status == CRStatus.DELETED:
                continue
            assert can_view(make_cr(status), VP) == (status in VP_VISIBLE_STATUSES)

    def test_vp_sees_own_crs_at_any_stage(self):
        assert can_view(make_cr(CRStatus.DRAFT, owner_id="victor"), VP)

    def test_it_manager_sees_approved_onwards(self):
        assert can_view(make_cr(CRStatus.APPROVED), IT_MANAGER)
        assert can_view(make_cr(CRStatus.COMPLETED), IT_MANAGER)
        assert not can_view(make_cr(CRStatus.PENDING_VP), IT_MANAGER)

    def test_developer_never_sees_unassigned_cr(self):
        for status in CRStatus:
            assert not can_view(make_cr(status), DEV)
        assert can_view(make_cr(CRStatus.ASSIGNED_DEV, developers=["dana"]), DEV)

    def test_deleted_visible_to_owner_only(self):
        cr = make_cr(CRStatus.DELETED)
        assert can_view(cr, ALICE)
        assert not can_view(cr, MANAGER)
        assert not can_view(cr, VP)

    def test_same_inputs_same_answer(self):
        """Visibility depends on nothing but the snapshot and the actor."""
        cr = make_cr(CRStatus.PENDING_VP)
        assert [can_view(cr, VP) for _ in range(3)] == [True, True, True]


class TestGuards:
    """Test guard helpers raising ForbiddenError."""

    def test_require_view(self):
        with pytest.raises(ForbiddenError) as exc_info:
            require_view(make_cr(), CAROL)
        assert exc_info.value.to_dict()["error"] == "permission_denied"

    def test_require_owner_applies_to_visible_crs(self):
        """A manager who can view a CR still cannot edit it."""
        cr = make_cr(CRStatus.DRAFT)
        assert can_view(cr, MANAGER)
        with pytest.raises(ForbiddenError, match="Only the creator"):
            require_owner(cr, MANAGER, "edit")


class TestListScope:
    """Test collection filters per role."""

    def test_user_scope_is_owner(self):
        scope = build_list_scope(ALICE)
        assert scope.owner_id == "alice"
        assert scope.statuses == LISTABLE_STATUSES
        assert CRStatus.DELETED not in scope.statuses

    def test_manager_scope_is_division(self):
        scope = build_list_scope(MANAGER, CRStatus.PENDING_MANAGER)
        assert scope.division == "Finance"
        assert scope.statuses == {CRStatus.PENDING_MANAGER}

    def test_status_outside_role_yields_empty_scope(self):
        assert build_list_scope(VP, CRStatus.PENDING_MANAGER).statuses == frozenset()
        assert build_list_scope(IT_MANAGER, CRStatus.DRAFT).statuses == frozenset()

    def test_developer_scope_is_assignment(self):
        assert build_list_scope(DEV).developer_id == "dana"
