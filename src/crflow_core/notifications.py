"""In-app notifications for workflow events.

The engine talks to a ``Notifier``. ``StoreNotifier`` persists one row per
recipient through the record store. Fan-out to a role or a division's
managers is unordered, and a failure for one recipient is logged without
stopping delivery to the others.
"""
import logging
from typing import Optional, Protocol

from .models import Role
from .schemas import NotificationPayload, NotificationRecord
from .store import RecordStore

logger = logging.getLogger("crflow-core.notifications")


class Notifier(Protocol):
    """Delivery contract consumed by the lifecycle engine."""

    def notify_user(self, user_id: str, payload: NotificationPayload) -> None: ...

    def notify_role(self, role: Role, payload: NotificationPayload) -> None: ...

    def notify_division_managers(self, division: Optional[str], payload: NotificationPayload) -> None: ...


class StoreNotifier:
    """Notifier writing in-app notifications to the record store."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _deliver(self, user_ids: list[str], payload: NotificationPayload) -> int:
        delivered = 0
        for user_id in user_ids:
            try:
                self.store.create_notification(user_id, payload)
                delivered += 1
            except Exception:
                logger.exception(f"Failed to deliver {payload.type} notification to user {user_id}")
        return delivered

    def notify_user(self, user_id: str, payload: NotificationPayload) -> None:
        self._deliver([user_id], payload)

    def notify_role(self, role: Role, payload: NotificationPayload) -> None:
        recipients = [user.id for user in self.store.find_users(role=role)]
        delivered = self._deliver(recipients, payload)
        logger.info(f"Notified {delivered}/{len(recipients)} {role.value} users: {payload.type}")

    def notify_division_managers(self, division: Optional[str], payload: NotificationPayload) -> None:
        if division is None:
            logger.warning(f"No division to notify for {payload.type} on {payload.related_id}")
            return
        recipients = [user.id for user in self.store.find_users(role=Role.MANAGER, division=division)]
        delivered = self._deliver(recipients, payload)
        logger.info(f"Notified {delivered}/{len(recipients)} managers of {division}: {payload.type}")

    # Inbox

    def list_for_user(
        self, user_id: str, page: int = 1, page_size: int = 20, unread_only: bool = False
    ) -> tuple[list[NotificationRecord], int]:
        """Page through a user's notifications, newest first."""
        return self.store.list_notifications(
            user_id, unread_only=unread_only, skip=(page - 1) * page_size, limit=page_size
        )

    def unread_count(self, user_id: str) -> int:
        return self.store.count_unread_notifications(user_id)

    def mark_read(self, user_id: str, notification_id: int) -> bool:
        """Mark one notification read; only the recipient's own rows are touched."""
        return self.store.mark_notifications_read(user_id, notification_id) > 0

    def mark_all_read(self, user_id: str) -> int:
        return self.store.mark_notifications_read(user_id)
