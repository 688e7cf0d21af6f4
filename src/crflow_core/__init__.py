"""CRFlow core - change request approval workflow.

Modules:
- lifecycle: ChangeRequestEngine driving every workflow transition
- state_machine: transition table and revision limits
- access: role-based visibility and ownership rules
- store: RecordStore contract and its SQLAlchemy implementation
- notifications, documents: side-effect contracts
- app: build_engine wiring
"""

__version__ = "1.0.0"

from .app import build_engine
from .errors import (
    CRFlowError,
    ForbiddenError,
    IdentifierConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from .lifecycle import ChangeRequestEngine
from .models import CRStatus, Role

__all__ = [
    "build_engine",
    "ChangeRequestEngine",
    "CRFlowError",
    "CRStatus",
    "ForbiddenError",
    "IdentifierConflictError",
    "NotFoundError",
    "PreconditionError",
    "Role",
    "ValidationError",
    "__version__",
]
