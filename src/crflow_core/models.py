"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj], native_enum=False),
        **kwargs,
    )


class Role(str, enum.Enum):
    """Closed set of organizational roles.

    There is no hierarchy between roles beyond what the CR state machine
    encodes. Adding a role means touching both the access rules and the
    transition table.
    """

    USER = "USER"
    MANAGER = "MANAGER"
    VP = "VP"
    MANAGER_IT = "MANAGER_IT"
    DEV = "DEV"


class CRStatus(str, enum.Enum):
    """Lifecycle status of a change request.

    Terminal states: REJECTED_MANAGER, REJECTED_VP, COMPLETED, DELETED.
    """

    DRAFT = "DRAFT"
    PENDING_MANAGER = "PENDING_MANAGER"
    REVISION_MANAGER = "REVISION_MANAGER"
    REJECTED_MANAGER = "REJECTED_MANAGER"
    PENDING_VP = "PENDING_VP"
    REVISION_VP = "REVISION_VP"
    REJECTED_VP = "REJECTED_VP"
    APPROVED = "APPROVED"
    ASSIGNED_DEV = "ASSIGNED_DEV"
    COMPLETED = "COMPLETED"
    DELETED = "DELETED"


class ApprovalAction(str, enum.Enum):
    """Actions recorded in the approval log."""

    SUBMIT = "SUBMIT"
    RESUBMIT = "RESUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_REVISION = "REQUEST_REVISION"


class DocumentType(str, enum.Enum):
    """Document origin: uploaded by the requester or generated on VP approval."""

    ATTACHMENT = "ATTACHMENT"
    PDF_APPROVAL = "PDF_APPROVAL"


class User(Base):
    """
    Organization member acting on change requests.

    Division only matters for USER/MANAGER pairing: managers review CRs
    created by users of their own division.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    role = _enum_column(Role, nullable=False, default=Role.USER, index=True)
    division = Column(String(100), nullable=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    change_requests = relationship("ChangeRequest", back_populates="owner")

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value})>"


class ChangeRequest(Base):
    """
    Change request ticket routed through the approval hierarchy.

    Lifecycle: DRAFT -> PENDING_MANAGER -> PENDING_VP -> APPROVED
    -> ASSIGNED_DEV -> COMPLETED, with revision loops back to the owner and
    terminal rejections at both approval stages.

    The primary key is the human-readable id (CR-YYYY-MM-NNNNNN). Rows are
    never physically deleted; deletion moves the status to DELETED so that
    ids are never reused.
    """

    __tablename__ = "change_requests"

    id = Column(String(20), primary_key=True)
    owner_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Structured request payload; title is mirrored for search
    form_data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    title = Column(String(200), nullable=False, default="")

    status = _enum_column(CRStatus, nullable=False, default=CRStatus.DRAFT, index=True)
    current_approver_role = _enum_column(Role, nullable=True)

    # Revision cycles consumed per approval stage (never reset)
    manager_revision_count = Column(Integer, nullable=False, default=0)
    vp_revision_count = Column(Integer, nullable=False, default=0)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    owner = relationship("User", back_populates="change_requests")
    approval_logs = relationship(
        "ApprovalLog",
        back_populates="change_request",
        order_by="ApprovalLog.id",
    )
    assignments = relationship("DeveloperAssignment", back_populates="change_request")
    documents = relationship("Document", back_populates="change_request")

    # Constraints
    __table_args__ = (
        CheckConstraint("manager_revision_count >= 0 AND manager_revision_count <= 3", name="chk_manager_revision_cap"),
        CheckConstraint("vp_revision_count >= 0 AND vp_revision_count <= 2", name="chk_vp_revision_cap"),
    )

    def __repr__(self) -> str:
        return f"<ChangeRequest {self.id}: {self.status.value}>"


class ApprovalLog(Base):
    """
    Append-only audit trail entry for a change request.

    Entries are never updated or deleted; the ordered sequence per CR is the
    source of truth for progress reconstruction.
    """

    __tablename__ = "approval_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cr_id = Column(String(20), ForeignKey("change_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    action = _enum_column(ApprovalAction, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    change_request = relationship("ChangeRequest", back_populates="approval_logs")
    approver = relationship("User")

    def __repr__(self) -> str:
        return f"<ApprovalLog {self.cr_id}: {self.action.value} at {self.created_at}>"


class DeveloperAssignment(Base):
    """Developer mapped to an approved change request by the IT manager."""

    __tablename__ = "developer_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cr_id = Column(String(20), ForeignKey("change_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    developer_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    assigned_by_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    notes = Column(Text, nullable=True)
    assigned_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    change_request = relationship("ChangeRequest", back_populates="assignments")
    developer = relationship("User", foreign_keys=[developer_id])
    assigned_by = relationship("User", foreign_keys=[assigned_by_id])

    # Constraints
    __table_args__ = (
        UniqueConstraint("cr_id", "developer_id", name="unique_cr_developer"),
    )

    def __repr__(self) -> str:
        return f"<DeveloperAssignment {self.cr_id} -> {self.developer_id}>"


class Document(Base):
    """File attached to a change request (uploaded or generated)."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cr_id = Column(String(20), ForeignKey("change_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(255), nullable=False)
    file_type = _enum_column(DocumentType, nullable=False, default=DocumentType.ATTACHMENT)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    change_request = relationship("ChangeRequest", back_populates="documents")

    def __repr__(self) -> str:
        return f"<Document {self.cr_id}: {self.file_name} ({self.file_type.value})>"


class Notification(Base):
    """In-app notification delivered to a single user."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    related_id = Column(String(20), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Notification {self.type} for user_id={self.user_id}>"


class CRSequence(Base):
    """
    Tracks the last issued sequence number per CR id prefix (CR-YYYY-MM).

    Incremented in place with a single UPDATE so that concurrent creators in
    the same month serialize on the row instead of racing on max(id).
    """

    __tablename__ = "cr_sequences"

    prefix = Column(String(10), primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Constraints
    __table_args__ = (
        CheckConstraint("last_number >= 0", name="chk_last_number_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<CRSequence {self.prefix} last={self.last_number}>"
