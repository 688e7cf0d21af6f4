"""Tests for in-app notification delivery and the inbox."""
from crflow_core.lifecycle import ChangeRequestEngine
from crflow_core.models import Role
from crflow_core.notifications import StoreNotifier
from crflow_core.schemas import NotificationPayload

from conftest import valid_form


def payload(kind="CR_SUBMITTED", related_id="CR-2026-10-000001"):
    return NotificationPayload(title="New CR", message="A CR is waiting", type=kind, related_id=related_id)


class TestDelivery:
    """Test recipient fan-out."""

    def test_division_managers_only(self, store, users):
        notifier = StoreNotifier(store)

        notifier.notify_division_managers("Finance", payload())

        assert notifier.unread_count(users.manager.id) == 1
        assert notifier.unread_count(users.hr_manager.id) == 0

    def test_missing_division_notifies_nobody(self, store, users):
        notifier = StoreNotifier(store)
        notifier.notify_division_managers(None, payload())
        assert notifier.unread_count(users.manager.id) == 0

    def test_role_fan_out(self, store, users):
        notifier = StoreNotifier(store)

        notifier.notify_role(Role.DEV, payload("CR_ASSIGNED"))

        assert notifier.unread_count(users.dev1.id) == 1
        assert notifier.unread_count(users.dev2.id) == 1
        assert notifier.unread_count(users.it_manager.id) == 0

    def test_one_failure_does_not_stop_others(self, store, users, monkeypatch):
        notifier = StoreNotifier(store)
        real_create = store.create_notification

        def flaky_create(user_id, content):
            if user_id == users.dev1.id:
                raise RuntimeError("inbox unavailable")
            return real_create(user_id, content)

        monkeypatch.setattr(store, "create_notification", flaky_create)

        notifier.notify_role(Role.DEV, payload("CR_ASSIGNED"))

        assert notifier.unread_count(users.dev1.id) == 0
        assert notifier.unread_count(users.dev2.id) == 1


class TestInbox:
    """Test reading and acknowledging notifications."""

    def test_newest_first_and_paging(self, store, users):
        notifier = StoreNotifier(store)
        for n in range(3):
            notifier.notify_user(users.requester.id, payload(related_id=f"CR-2026-10-00000{n + 1}"))

        items, total = notifier.list_for_user(users.requester.id, page=1, page_size=2)

        assert total == 3
        assert [item.related_id for item in items] == ["CR-2026-10-000003", "CR-2026-10-000002"]

    def test_mark_read(self, store, users):
        notifier = StoreNotifier(store)
        notifier.notify_user(users.requester.id, payload())
        notifier.notify_user(users.requester.id, payload())
        [first, _], _ = notifier.list_for_user(users.requester.id)

        assert notifier.mark_read(users.requester.id, first.id)
        assert notifier.unread_count(users.requester.id) == 1
        unread, total = notifier.list_for_user(users.requester.id, unread_only=True)
        assert total == 1 and unread[0].id != first.id

    def test_mark_read_only_own(self, store, users):
        notifier = StoreNotifier(store)
        notifier.notify_user(users.requester.id, payload())
        [mine], _ = notifier.list_for_user(users.requester.id)

        assert not notifier.mark_read(users.colleague.id, mine.id)
        assert notifier.unread_count(users.requester.id) == 1

    def test_mark_all_read(self, store, users):
        notifier = StoreNotifier(store)
        for _ in range(3):
            notifier.notify_user(users.requester.id, payload())

        assert notifier.mark_all_read(users.requester.id) == 3
        assert notifier.unread_count(users.requester.id) == 0


class TestWorkflowNotifications:
    """Test notifications produced by the engine with the store-backed notifier."""

    def test_submit_reaches_division_manager(self, store, users, generator, storage, settings, clock):
        notifier = StoreNotifier(store)
        engine = ChangeRequestEngine(store, notifier, generator, storage, settings=settings, clock=clock)

        cr = engine.create(users.requester, valid_form())
        engine.submit(cr.id, users.requester)

        [note], _ = notifier.list_for_user(users.manager.id)
        assert note.type == "CR_SUBMITTED"
        assert note.related_id == cr.id
        assert notifier.unread_count(users.hr_manager.id) == 0
