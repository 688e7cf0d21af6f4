"""Pydantic schemas for input validation and store records."""
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ApprovalAction, CRStatus, DocumentType, Role

# Minimum length for rejection reasons and revision instructions
DECISION_NOTES_MIN_LENGTH = 50


# Change Request input schemas

class CRFormData(BaseModel):
    """Structured payload of a change request form.

    All fields are required. Field names follow the form's JSON keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    target_date: str = Field(..., alias="targetDate")
    title: str = Field(..., min_length=5, max_length=200)
    requester1: str = Field(..., min_length=2)
    requester2: str = Field(..., min_length=2, description="Requesting manager")
    business_area: str = Field(..., min_length=2, alias="businessArea")
    category_impact: str = Field(..., min_length=2, alias="categoryImpact")
    impact_description: str = Field(..., min_length=10, alias="impactDescription")
    background: str = Field(..., min_length=20)
    objective: str = Field(..., min_length=10)
    service_explanation: str = Field(..., min_length=10, alias="serviceExplanation")
    services_needed: str = Field(..., min_length=5, alias="servicesNeeded")

    @field_validator("target_date")
    @classmethod
    def target_date_must_parse(cls, value: str) -> str:
        try:
            date.fromisoformat(value[:10])
        except ValueError:
            raise ValueError("target date is not a valid ISO date")
        return value

    def to_payload(self) -> dict:
        """Serialize with the form's JSON keys for storage."""
        return self.model_dump(by_alias=True)


class ApprovalDecision(BaseModel):
    """Approve action: notes are optional."""

    notes: Optional[str] = None


class DecisionWithReason(BaseModel):
    """Reject or request-revision action: a substantive explanation is required."""

    notes: str = Field(..., min_length=DECISION_NOTES_MIN_LENGTH)


class DeveloperAssignmentCreate(BaseModel):
    """IT manager assigning developers to an approved CR."""

    developer_ids: list[str] = Field(..., min_length=1)
    notes: Optional[str] = None


class AttachmentUpload(BaseModel):
    """Metadata of a file uploaded by the requester."""

    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    file_size: int = Field(..., ge=0)


class ChangeRequestQuery(BaseModel):
    """List filters, sorting and paging."""

    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)
    status: Optional[CRStatus] = None
    search: Optional[str] = None
    sort_by: Literal["created_at", "updated_at", "id"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


# Store records

class UserRecord(BaseModel):
    """User as seen by the workflow."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: Role
    division: Optional[str] = None


class ChangeRequestRecord(BaseModel):
    """Snapshot of a change request row.

    ``owner_division`` and ``developer_ids`` are resolved by the store so
    that visibility can be decided from the record alone.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    owner_name: Optional[str] = None
    owner_division: Optional[str] = None
    form_data: dict
    title: str = ""
    status: CRStatus
    current_approver_role: Optional[Role] = None
    manager_revision_count: int = 0
    vp_revision_count: int = 0
    developer_ids: frozenset[str] = frozenset()
    created_at: datetime
    updated_at: datetime


class ApprovalLogRecord(BaseModel):
    """Approval log entry with the approver's name and role at read time."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    cr_id: str
    approver_id: str
    approver_name: Optional[str] = None
    approver_role: Optional[Role] = None
    action: ApprovalAction
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class AssignmentRecord(BaseModel):
    """Developer assignment row."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    cr_id: str
    developer_id: str
    developer_name: Optional[str] = None
    assigned_by_id: str
    notes: Optional[str] = None
    assigned_at: Optional[datetime] = None


class DocumentRecord(BaseModel):
    """Document metadata row."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    cr_id: str
    file_name: str
    file_path: str
    file_size: int
    mime_type: str
    file_type: DocumentType = DocumentType.ATTACHMENT
    created_at: Optional[datetime] = None


class NotificationPayload(BaseModel):
    """Content of a notification, independent of its recipients."""

    title: str
    message: str
    type: str
    related_id: Optional[str] = None


class NotificationRecord(NotificationPayload):
    """Notification delivered to one user."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    user_id: str
    is_read: bool = False
    created_at: Optional[datetime] = None


# Projections

class ChangeRequestDetail(BaseModel):
    """A change request with its audit trail, assignments and documents."""

    change_request: ChangeRequestRecord
    approval_logs: list[ApprovalLogRecord] = Field(default_factory=list)
    assignments: list[AssignmentRecord] = Field(default_factory=list)
    documents: list[DocumentRecord] = Field(default_factory=list)
    allowed_actions: list[str] = Field(default_factory=list)


class ChangeRequestListResponse(BaseModel):
    """Paginated list of change requests."""

    items: list[ChangeRequestRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProgressStep(BaseModel):
    """One milestone of the progress view."""

    step: int
    name: str
    status: Literal["completed", "current", "pending"] = "pending"
    timestamp: Optional[datetime] = None
    approver: Optional[str] = None
    developers: list[str] = Field(default_factory=list)


class ProgressView(BaseModel):
    """Ordered milestones derived from the approval log."""

    cr_id: str
    current_status: CRStatus
    steps: list[ProgressStep]


class DashboardSummary(BaseModel):
    """Short CR line used in dashboard lists."""

    id: str
    title: str
    status: CRStatus
    requester: Optional[str] = None
    division: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DashboardResponse(BaseModel):
    """Role-specific dashboard."""

    user: UserRecord
    stats: dict[str, int]
    items: list[DashboardSummary] = Field(default_factory=list)
