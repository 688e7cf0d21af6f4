"""Persistence contract for the workflow and its SQLAlchemy binding.

The lifecycle engine only depends on ``RecordStore``. ``SqlRecordStore``
implements it with one short transaction per call, or one shared transaction
for every call made inside ``atomic()`` on the same thread.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional, Protocol

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from . import models
from .access import ListScope
from .errors import IdentifierConflictError, NotFoundError
from .identifiers import format_cr_id, parse_cr_id, prefix_for
from .models import CRStatus, Role, utcnow
from .schemas import (
    ApprovalLogRecord,
    AssignmentRecord,
    ChangeRequestRecord,
    DocumentRecord,
    NotificationPayload,
    NotificationRecord,
    UserRecord,
)

logger = logging.getLogger("crflow-core.store")

SORTABLE_COLUMNS = {
    "created_at": models.ChangeRequest.created_at,
    "updated_at": models.ChangeRequest.updated_at,
    "id": models.ChangeRequest.id,
}


class RecordStore(Protocol):
    """Durable storage for change requests and everything hanging off them."""

    def atomic(self) -> Any:
        """Context manager grouping subsequent calls into one transaction."""
        ...

    # Change requests
    def create_cr(
        self, owner_id: str, form_data: dict, fields: dict, now: datetime, reseed: bool = False
    ) -> ChangeRequestRecord: ...
    def get_cr(self, cr_id: str) -> Optional[ChangeRequestRecord]: ...
    def update_cr(
        self,
        cr_id: str,
        patch: dict,
        expected: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ChangeRequestRecord]: ...
    def list_crs(
        self,
        scope: ListScope,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[ChangeRequestRecord], int]: ...
    def count_by_status(self, scope: ListScope) -> dict[CRStatus, int]: ...

    # Audit trail and assignments
    def append_approval_log(self, entry: ApprovalLogRecord) -> ApprovalLogRecord: ...
    def list_approval_logs(self, cr_id: str) -> list[ApprovalLogRecord]: ...
    def create_assignments(self, entries: list[AssignmentRecord]) -> list[AssignmentRecord]: ...
    def list_assignments(self, cr_id: str) -> list[AssignmentRecord]: ...

    # Documents
    def count_documents(self, cr_id: str) -> int: ...
    def list_documents(self, cr_id: str) -> list[DocumentRecord]: ...
    def get_document(self, cr_id: str, document_id: int) -> Optional[DocumentRecord]: ...
    def add_document(self, document: DocumentRecord) -> DocumentRecord: ...
    def delete_document(self, document_id: int) -> bool: ...

    # Users
    def get_user(self, user_id: str) -> Optional[UserRecord]: ...
    def find_users(
        self,
        role: Optional[Role] = None,
        division: Optional[str] = None,
        ids: Optional[list[str]] = None,
    ) -> list[UserRecord]: ...

    # Notifications
    def create_notification(self, user_id: str, payload: NotificationPayload) -> NotificationRecord: ...
    def list_notifications(
        self, user_id: str, unread_only: bool = False, skip: int = 0, limit: int = 20
    ) -> tuple[list[NotificationRecord], int]: ...
    def count_unread_notifications(self, user_id: str) -> int: ...
    def mark_notifications_read(self, user_id: str, notification_id: Optional[int] = None) -> int: ...


class SqlRecordStore:
    """RecordStore backed by SQLAlchemy sessions."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run every store call in the block inside one transaction.

        Nested blocks join the outer transaction. The transaction commits when
        the outermost block exits normally and rolls back on any exception.
        """
        if getattr(self._local, "session", None) is not None:
            yield
            return

        session = self._session_factory()
        self._local.session = session
        try:
            yield
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        current = getattr(self._local, "session", None)
        if current is not None:
            yield current
            return

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Change requests
    # ------------------------------------------------------------------

    def _highest_issued(self, session: Session, prefix: str) -> int:
        highest = session.execute(
            select(func.max(models.ChangeRequest.id)).where(models.ChangeRequest.id.like(f"{prefix}-%"))
        ).scalar()
        return parse_cr_id(highest).sequence if highest else 0

    def _next_sequence(self, session: Session, prefix: str, reseed: bool = False) -> int:
        """Increment and return the counter for ``prefix``.

        The UPDATE takes the row lock before the value is read back, so
        concurrent creators in the same month are serialized. With ``reseed``
        the result also skips past the highest id already in the table.
        """
        result = session.execute(
            update(models.CRSequence)
            .where(models.CRSequence.prefix == prefix)
            .values(last_number=models.CRSequence.last_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            sequence = session.execute(
                select(models.CRSequence.last_number)
                .where(models.CRSequence.prefix == prefix)
                .execution_options(populate_existing=True)
            ).scalar_one()
            if reseed:
                highest = self._highest_issued(session, prefix)
                if sequence <= highest:
                    logger.warning(f"Counter for {prefix} was behind at {sequence - 1}, reseeding from {highest}")
                    sequence = highest + 1
                    session.execute(
                        update(models.CRSequence)
                        .where(models.CRSequence.prefix == prefix)
                        .values(last_number=sequence)
                        .execution_options(synchronize_session=False)
                    )
            return sequence

        # First CR of the month: seed from the highest id already issued
        sequence = self._highest_issued(session, prefix) + 1
        session.add(models.CRSequence(prefix=prefix, last_number=sequence))
        session.flush()
        return sequence

    def create_cr(
        self, owner_id: str, form_data: dict, fields: dict, now: datetime, reseed: bool = False
    ) -> ChangeRequestRecord:
        """
        Insert a change request with a freshly allocated id.

        Args:
            reseed: Raise the month counter to the highest issued id before
                allocating (used when retrying after a conflict)

        Raises:
            NotFoundError: If the owner does not exist
            IdentifierConflictError: If the allocated id (or the month counter
                row) collides with a concurrent creator
        """
        prefix = prefix_for(now)
        with self._session() as session:
            if session.get(models.User, owner_id) is None:
                raise NotFoundError("User", owner_id)
            cr_id = prefix
            try:
                sequence = self._next_sequence(session, prefix, reseed)
                cr_id = format_cr_id(prefix, sequence)
                cr = models.ChangeRequest(
                    id=cr_id,
                    owner_id=owner_id,
                    form_data=form_data,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
                session.add(cr)
                session.flush()
            except IntegrityError as e:
                logger.warning(f"Identifier conflict while creating {cr_id}: {e.orig}")
                raise IdentifierConflictError(cr_id) from e
            logger.info(f"Created change request {cr_id} for owner {owner_id}")
            return self._to_records(session, [cr])[0]

    def _load_cr(self, session: Session, cr_id: str) -> Optional[models.ChangeRequest]:
        return session.execute(
            select(models.ChangeRequest)
            .where(models.ChangeRequest.id == cr_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _to_records(self, session: Session, rows: list[models.ChangeRequest]) -> list[ChangeRequestRecord]:
        """Resolve owner and assigned developers for a batch of CR rows."""
        if not rows:
            return []
        cr_ids = [row.id for row in rows]
        owner_ids = {row.owner_id for row in rows}

        owners = {
            user.id: user
            for user in session.scalars(select(models.User).where(models.User.id.in_(owner_ids)))
        }
        developers: dict[str, set[str]] = {cr_id: set() for cr_id in cr_ids}
        for cr_id, developer_id in session.execute(
            select(models.DeveloperAssignment.cr_id, models.DeveloperAssignment.developer_id)
            .where(models.DeveloperAssignment.cr_id.in_(cr_ids))
        ):
            developers[cr_id].add(developer_id)

        records = []
        for row in rows:
            owner = owners.get(row.owner_id)
            records.append(ChangeRequestRecord(
                id=row.id,
                owner_id=row.owner_id,
                owner_name=owner.name if owner else None,
                owner_division=owner.division if owner else None,
                form_data=dict(row.form_data or {}),
                title=row.title or "",
                status=row.status,
                current_approver_role=row.current_approver_role,
                manager_revision_count=row.manager_revision_count,
                vp_revision_count=row.vp_revision_count,
                developer_ids=frozenset(developers[row.id]),
                created_at=row.created_at,
                updated_at=row.updated_at,
            ))
        return records

    def get_cr(self, cr_id: str) -> Optional[ChangeRequestRecord]:
        with self._session() as session:
            cr = self._load_cr(session, cr_id)
            if cr is None:
                return None
            return self._to_records(session, [cr])[0]

    def update_cr(
        self,
        cr_id: str,
        patch: dict,
        expected: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ChangeRequestRecord]:
        """
        Conditionally update a change request.

        Args:
            cr_id: Change request id
            patch: Column values to write
            expected: Column values the row must still hold (compare-and-swap)
            now: Timestamp for updated_at

        Returns:
            The updated record, or None if no row matched id and ``expected``
        """
        values = dict(patch)
        values["updated_at"] = now or utcnow()

        stmt = update(models.ChangeRequest).where(models.ChangeRequest.id == cr_id)
        for column, value in (expected or {}).items():
            stmt = stmt.where(getattr(models.ChangeRequest, column) == value)

        with self._session() as session:
            result = session.execute(stmt.values(**values).execution_options(synchronize_session=False))
            if result.rowcount == 0:
                logger.debug(f"Conditional update of {cr_id} matched no row (expected={expected})")
                return None
            cr = self._load_cr(session, cr_id)
            return self._to_records(session, [cr])[0]

    def _scoped_query(self, query, scope: ListScope):
        query = query.where(models.ChangeRequest.status.in_(list(scope.statuses)))
        if scope.owner_id is not None:
            query = query.where(models.ChangeRequest.owner_id == scope.owner_id)
        if scope.division is not None:
            query = query.where(
                models.ChangeRequest.owner_id.in_(
                    select(models.User.id).where(models.User.division == scope.division)
                )
            )
        if scope.developer_id is not None:
            query = query.where(
                exists().where(
                    models.DeveloperAssignment.cr_id == models.ChangeRequest.id,
                    models.DeveloperAssignment.developer_id == scope.developer_id,
                )
            )
        return query

    def list_crs(
        self,
        scope: ListScope,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[ChangeRequestRecord], int]:
        """
        List change requests within a scope.

        Args:
            scope: Row filter built from the actor's role
            search: Case-insensitive substring of id or title
            sort_by: created_at, updated_at or id
            sort_order: asc or desc
            skip: Rows to skip
            limit: Maximum rows to return

        Returns:
            Tuple of (records, total matching rows)
        """
        if not scope.statuses:
            return [], 0

        query = self._scoped_query(select(models.ChangeRequest), scope)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                models.ChangeRequest.id.ilike(pattern),
                models.ChangeRequest.title.ilike(pattern),
            ))

        column = SORTABLE_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()

        with self._session() as session:
            total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
            rows = list(session.scalars(
                query.order_by(ordering, models.ChangeRequest.id.desc()).offset(skip).limit(limit)
            ))
            return self._to_records(session, rows), total

    def count_by_status(self, scope: ListScope) -> dict[CRStatus, int]:
        """Count CRs per status within a scope (statuses with no rows are omitted)."""
        if not scope.statuses:
            return {}
        query = self._scoped_query(
            select(models.ChangeRequest.status, func.count(models.ChangeRequest.id)),
            scope,
        ).group_by(models.ChangeRequest.status)
        with self._session() as session:
            return {status: count for status, count in session.execute(query)}

    # ------------------------------------------------------------------
    # Audit trail and assignments
    # ------------------------------------------------------------------

    def append_approval_log(self, entry: ApprovalLogRecord) -> ApprovalLogRecord:
        with self._session() as session:
            log = models.ApprovalLog(
                cr_id=entry.cr_id,
                approver_id=entry.approver_id,
                action=entry.action,
                notes=entry.notes,
                created_at=entry.created_at or utcnow(),
            )
            session.add(log)
            session.flush()
            return entry.model_copy(update={"id": log.id, "created_at": log.created_at})

    def list_approval_logs(self, cr_id: str) -> list[ApprovalLogRecord]:
        """Approval log of a CR in creation order, with approver name and role."""
        with self._session() as session:
            rows = session.execute(
                select(models.ApprovalLog, models.User)
                .join(models.User, models.User.id == models.ApprovalLog.approver_id)
                .where(models.ApprovalLog.cr_id == cr_id)
                .order_by(models.ApprovalLog.created_at, models.ApprovalLog.id)
            ).all()
            return [
                ApprovalLogRecord(
                    id=log.id,
                    cr_id=log.cr_id,
                    approver_id=log.approver_id,
                    approver_name=user.name,
                    approver_role=user.role,
                    action=log.action,
                    notes=log.notes,
                    created_at=log.created_at,
                )
                for log, user in rows
            ]

    def create_assignments(self, entries: list[AssignmentRecord]) -> list[AssignmentRecord]:
        """Insert all assignments in one flush; any failure inserts none."""
        with self._session() as session:
            rows = [
                models.DeveloperAssignment(
                    cr_id=entry.cr_id,
                    developer_id=entry.developer_id,
                    assigned_by_id=entry.assigned_by_id,
                    notes=entry.notes,
                    assigned_at=entry.assigned_at or utcnow(),
                )
                for entry in entries
            ]
            session.add_all(rows)
            session.flush()
            return [
                entry.model_copy(update={"id": row.id, "assigned_at": row.assigned_at})
                for entry, row in zip(entries, rows)
            ]

    def list_assignments(self, cr_id: str) -> list[AssignmentRecord]:
        with self._session() as session:
            rows = session.execute(
                select(models.DeveloperAssignment, models.User)
                .join(models.User, models.User.id == models.DeveloperAssignment.developer_id)
                .where(models.DeveloperAssignment.cr_id == cr_id)
                .order_by(models.DeveloperAssignment.assigned_at, models.DeveloperAssignment.id)
            ).all()
            return [
                AssignmentRecord(
                    id=assignment.id,
                    cr_id=assignment.cr_id,
                    developer_id=assignment.developer_id,
                    developer_name=developer.name,
                    assigned_by_id=assignment.assigned_by_id,
                    notes=assignment.notes,
                    assigned_at=assignment.assigned_at,
                )
                for assignment, developer in rows
            ]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def count_documents(self, cr_id: str) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count(models.Document.id)).where(models.Document.cr_id == cr_id)
            ).scalar_one()

    def list_documents(self, cr_id: str) -> list[DocumentRecord]:
        with self._session() as session:
            rows = session.scalars(
                select(models.Document)
                .where(models.Document.cr_id == cr_id)
                .order_by(models.Document.created_at, models.Document.id)
            )
            return [DocumentRecord.model_validate(row) for row in rows]

    def get_document(self, cr_id: str, document_id: int) -> Optional[DocumentRecord]:
        with self._session() as session:
            row = session.execute(
                select(models.Document).where(
                    models.Document.id == document_id,
                    models.Document.cr_id == cr_id,
                )
            ).scalar_one_or_none()
            return DocumentRecord.model_validate(row) if row else None

    def add_document(self, document: DocumentRecord) -> DocumentRecord:
        with self._session() as session:
            row = models.Document(**document.model_dump(exclude={"id", "created_at"}), created_at=document.created_at or utcnow())
            session.add(row)
            session.flush()
            return DocumentRecord.model_validate(row)

    def delete_document(self, document_id: int) -> bool:
        with self._session() as session:
            row = session.get(models.Document, document_id)
            if row is None:
                return False
            session.delete(row)
            return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, email: str, name: str, role: Role, division: Optional[str] = None) -> UserRecord:
        with self._session() as session:
            user = models.User(email=email, name=name, role=role, division=division)
            session.add(user)
            session.flush()
            logger.info(f"Created user {email} ({role.value})")
            return UserRecord.model_validate(user)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session() as session:
            user = session.get(models.User, user_id)
            return UserRecord.model_validate(user) if user else None

    def find_users(
        self,
        role: Optional[Role] = None,
        division: Optional[str] = None,
        ids: Optional[list[str]] = None,
    ) -> list[UserRecord]:
        """
        Find users matching every given filter.

        Args:
            role: Restrict to a role
            division: Restrict to a division
            ids: Restrict to these user ids

        Returns:
            Matching users ordered by name
        """
        query = select(models.User)
        if role is not None:
            query = query.where(models.User.role == role)
        if division is not None:
            query = query.where(models.User.division == division)
        if ids is not None:
            query = query.where(models.User.id.in_(ids))
        with self._session() as session:
            return [UserRecord.model_validate(u) for u in session.scalars(query.order_by(models.User.name))]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(self, user_id: str, payload: NotificationPayload) -> NotificationRecord:
        with self._session() as session:
            row = models.Notification(user_id=user_id, **payload.model_dump())
            session.add(row)
            session.flush()
            return NotificationRecord.model_validate(row)

    def list_notifications(
        self, user_id: str, unread_only: bool = False, skip: int = 0, limit: int = 20
    ) -> tuple[list[NotificationRecord], int]:
        query = select(models.Notification).where(models.Notification.user_id == user_id)
        if unread_only:
            query = query.where(models.Notification.is_read.is_(False))
        with self._session() as session:
            total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
            rows = session.scalars(
                query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
                .offset(skip)
                .limit(limit)
            )
            return [NotificationRecord.model_validate(row) for row in rows], total

    def count_unread_notifications(self, user_id: str) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count(models.Notification.id)).where(
                    models.Notification.user_id == user_id,
                    models.Notification.is_read.is_(False),
                )
            ).scalar_one()

    def mark_notifications_read(self, user_id: str, notification_id: Optional[int] = None) -> int:
        """Mark one (or all) of a user's unread notifications as read; returns rows changed."""
        stmt = update(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.is_read.is_(False),
        )
        if notification_id is not None:
            stmt = stmt.where(models.Notification.id == notification_id)
        with self._session() as session:
            result = session.execute(stmt.values(is_read=True).execution_options(synchronize_session=False))
            return result.rowcount
