"""Tests for listing, detail, history and progress reads."""
import pytest

from conftest import REASON
from crflow_core.errors import ForbiddenError, NotFoundError, ValidationError
from crflow_core.models import CRStatus


class TestList:
    """Test role-scoped listing."""

    def test_user_lists_own(self, engine, workflow, users):
        mine = workflow.draft()
        workflow.draft(owner=users.colleague)

        result = engine.list_change_requests(users.requester)

        assert [cr.id for cr in result.items] == [mine.id]
        assert result.total == 1
        assert result.total_pages == 1

    def test_manager_lists_division(self, engine, workflow, users):
        workflow.pending_manager()
        workflow.pending_manager(owner=users.colleague)
        workflow.pending_manager(owner=users.outsider)

        assert engine.list_change_requests(users.manager).total == 2
        assert engine.list_change_requests(users.hr_manager).total == 1

    def test_vp_lists_past_manager_only(self, engine, workflow, users):
        workflow.pending_manager()
        at_vp = workflow.pending_vp(owner=users.colleague)

        result = engine.list_change_requests(users.vp)
        assert [cr.id for cr in result.items] == [at_vp.id]

    def test_status_outside_role_is_empty(self, engine, workflow, users):
        workflow.pending_manager()

        result = engine.list_change_requests(users.vp, status=CRStatus.PENDING_MANAGER)

        assert result.items == []
        assert result.total == 0
        assert result.total_pages == 0

    def test_developer_lists_assigned_only(self, engine, workflow, users):
        mine = workflow.assigned(developers=[users.dev1])
        workflow.assigned(developers=[users.dev2])

        result = engine.list_change_requests(users.dev1)
        assert [cr.id for cr in result.items] == [mine.id]

    def test_search_by_title_and_id(self, engine, workflow, users):
        payroll = workflow.draft()
        laptops = workflow.draft(title="Replace sales laptops")

        assert [cr.id for cr in engine.list_change_requests(users.requester, search="LAPTOP").items] == [laptops.id]
        assert [cr.id for cr in engine.list_change_requests(users.requester, search=payroll.id).items] == [payroll.id]

    def test_sort_and_paging(self, engine, workflow, users):
        created = [workflow.draft() for _ in range(5)]

        first = engine.list_change_requests(users.requester, page_size=2, sort_by="id", sort_order="asc")
        last = engine.list_change_requests(users.requester, page=3, page_size=2, sort_by="id", sort_order="asc")

        assert [cr.id for cr in first.items] == [created[0].id, created[1].id]
        assert [cr.id for cr in last.items] == [created[4].id]
        assert first.total == 5
        assert first.total_pages == 3

    def test_default_order_is_newest_first(self, engine, workflow, users):
        older = workflow.draft()
        newer = workflow.draft()
        assert [cr.id for cr in engine.list_change_requests(users.requester).items] == [newer.id, older.id]

    def test_invalid_query(self, engine, users):
        with pytest.raises(ValidationError):
            engine.list_change_requests(users.requester, sort_by="title")
        with pytest.raises(ValidationError):
            engine.list_change_requests(users.requester, page=0)


class TestDetail:
    """Test single CR reads."""

    def test_detail(self, engine, workflow, users):
        cr = workflow.pending_manager()

        detail = engine.get_change_request(cr.id, users.manager)

        assert detail.change_request.id == cr.id
        assert [log.action.value for log in detail.approval_logs] == ["SUBMIT"]
        assert set(detail.allowed_actions) == {"approve", "reject", "request_revision"}

    def test_unknown_id(self, engine, users):
        with pytest.raises(NotFoundError) as exc_info:
            engine.get_change_request("CR-2026-10-000404", users.requester)
        assert exc_info.value.to_dict()["resource_id"] == "CR-2026-10-000404"

    def test_hidden_from_other_users(self, engine, workflow, users):
        cr = workflow.draft()
        with pytest.raises(ForbiddenError):
            engine.get_change_request(cr.id, users.colleague)
        with pytest.raises(ForbiddenError):
            engine.get_history(cr.id, users.dev1)


class TestProgress:
    """Test the six-milestone progress view."""

    def test_draft_progress(self, engine, workflow, users):
        cr = workflow.draft()

        progress = engine.get_progress(cr.id, users.requester)

        assert [step.status for step in progress.steps] == [
            "completed", "current", "pending", "pending", "pending", "pending",
        ]

    def test_progress_after_vp_approval(self, engine, workflow, users):
        cr = workflow.approved()

        progress = engine.get_progress(cr.id, users.requester)

        names = [step.name for step in progress.steps]
        assert names == [
            "Draft", "Submit to Manager", "Manager Approval", "VP Approval", "Assigned to Developer", "Completed",
        ]
        assert [step.status for step in progress.steps] == [
            "completed", "completed", "completed", "completed", "current", "pending",
        ]
        assert progress.steps[2].approver == "Bob Manager"
        assert progress.steps[3].approver == "Victor VP"

    def test_manager_approval_survives_vp_revision(self, engine, workflow, users):
        cr = workflow.pending_vp()
        engine.request_revision(cr.id, users.vp, REASON)

        progress = engine.get_progress(cr.id, users.requester)

        assert progress.current_status == CRStatus.REVISION_VP
        assert progress.steps[2].status == "completed"
        assert progress.steps[3].status == "current"

    def test_completed_progress(self, engine, workflow, users):
        cr = workflow.assigned(developers=[users.dev1, users.dev2])
        engine.complete(cr.id, users.it_manager)

        progress = engine.get_progress(cr.id, users.dev1)

        assert all(step.status == "completed" for step in progress.steps)
        assert sorted(progress.steps[4].developers) == ["Dana Dev", "Eli Dev"]
