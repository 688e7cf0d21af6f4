"""Tests for role-specific dashboards."""
from conftest import REASON


class TestDashboard:
    """Test per-role statistics and lists."""

    def test_user_dashboard(self, engine, workflow, users):
        draft = workflow.draft()
        pending = workflow.pending_manager()
        rejected = workflow.pending_manager()
        engine.reject(rejected.id, users.manager, REASON)
        workflow.draft(owner=users.colleague)

        dashboard = engine.get_dashboard(users.requester)

        assert dashboard.user.id == users.requester.id
        assert dashboard.stats["total"] == 3
        assert dashboard.stats["draft"] == 1
        assert dashboard.stats["pending"] == 1
        assert dashboard.stats["rejected"] == 1
        assert dashboard.stats["completed"] == 0
        # Most recently updated first
        assert [item.id for item in dashboard.items] == [rejected.id, pending.id, draft.id]

    def test_manager_dashboard(self, engine, workflow, users):
        first = workflow.pending_manager()
        second = workflow.pending_manager(owner=users.colleague)
        workflow.pending_manager(owner=users.outsider)
        workflow.draft()

        dashboard = engine.get_dashboard(users.manager)

        assert dashboard.stats["pending_approval"] == 2
        assert dashboard.stats["total_division"] == 3
        # Oldest waiting first
        assert [item.id for item in dashboard.items] == [first.id, second.id]
        assert dashboard.items[1].requester == "Carol Finch"

    def test_vp_dashboard(self, engine, workflow, users):
        workflow.pending_manager()
        waiting = workflow.pending_vp()
        workflow.approved()

        dashboard = engine.get_dashboard(users.vp)

        assert dashboard.stats == {
            "pending_approval": 1,
            "total": 2,
            "approved": 1,
            "assigned": 0,
            "completed": 0,
        }
        assert [item.id for item in dashboard.items] == [waiting.id]
        assert dashboard.items[0].division == "Finance"

    def test_it_manager_dashboard(self, engine, workflow, users):
        awaiting = workflow.approved()
        workflow.assigned()

        dashboard = engine.get_dashboard(users.it_manager)

        assert dashboard.stats == {"need_mapping": 1, "assigned": 1, "completed": 0}
        assert [item.id for item in dashboard.items] == [awaiting.id]

    def test_developer_dashboard(self, engine, workflow, users):
        mine = workflow.assigned(developers=[users.dev1])
        workflow.assigned(developers=[users.dev2])
        done = workflow.assigned(developers=[users.dev1, users.dev2])
        engine.complete(done.id, users.dev1)

        dashboard = engine.get_dashboard(users.dev1)

        assert dashboard.stats == {"assigned": 2, "in_progress": 1, "completed": 1}
        assert {item.id for item in dashboard.items} == {mine.id, done.id}
