"""Error taxonomy for change request operations.

Every error carries a machine-readable ``error_code`` and the structured
attributes a caller needs to explain the failure, mirroring the detail dicts
the API layer used to build for permission errors.
"""
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import CRStatus, Role


class CRFlowError(Exception):
    """Base class for all change request workflow errors."""

    error_code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class ValidationError(CRFlowError):
    """Raised when input is malformed (short notes, bad form data, bad enum)."""

    error_code = "validation_error"

    def __init__(self, message: str, errors: Optional[list[dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError, message: str = "Invalid input") -> "ValidationError":
        """Flatten a pydantic error into field-level ``{field, message}`` entries."""
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "__root__",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return cls(message, errors=errors)

    def to_dict(self) -> dict[str, Any]:
        detail = super().to_dict()
        detail["errors"] = self.errors
        return detail


class NotFoundError(CRFlowError):
    """Raised when a change request, user or document does not exist."""

    error_code = "not_found"

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(f"{resource_type} not found: {resource_id}")
        self.resource_type = resource_type
        self.resource_id = resource_id

    def to_dict(self) -> dict[str, Any]:
        detail = super().to_dict()
        detail.update(resource_type=self.resource_type, resource_id=str(self.resource_id))
        return detail


class ForbiddenError(CRFlowError):
    """Raised when the actor lacks the role, division, ownership or assignment."""

    error_code = "permission_denied"

    def __init__(
        self,
        message: str,
        action: str,
        current_role: Optional[Role] = None,
        required_role: Optional[Role] = None,
    ):
        super().__init__(message)
        self.action = action
        self.current_role = current_role
        self.required_role = required_role

    def to_dict(self) -> dict[str, Any]:
        detail = super().to_dict()
        detail.update(
            action=self.action,
            current_role=self.current_role.value if self.current_role else None,
            required_role=self.required_role.value if self.required_role else None,
        )
        return detail


class PreconditionError(CRFlowError):
    """Raised when the CR is not in a state that permits the action.

    Covers status mismatches, exhausted revision cycles, attachment limits
    and invalid developer ids. Carries the current status (and counter, when
    relevant) so the caller can explain the refusal.
    """

    error_code = "precondition_failed"

    def __init__(
        self,
        message: str,
        current_status: Optional[CRStatus] = None,
        allowed_actions: Optional[list[str]] = None,
        revision_count: Optional[int] = None,
        revision_limit: Optional[int] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.allowed_actions = allowed_actions or []
        self.revision_count = revision_count
        self.revision_limit = revision_limit

    def to_dict(self) -> dict[str, Any]:
        detail = super().to_dict()
        detail.update(
            current_status=self.current_status.value if self.current_status else None,
            allowed_actions=self.allowed_actions,
        )
        if self.revision_limit is not None:
            detail.update(revision_count=self.revision_count, revision_limit=self.revision_limit)
        return detail


class IdentifierConflictError(CRFlowError):
    """Raised by the store when a freshly generated CR id already exists."""

    error_code = "identifier_conflict"

    def __init__(self, cr_id: str):
        super().__init__(f"Change request id already exists: {cr_id}")
        self.cr_id = cr_id
