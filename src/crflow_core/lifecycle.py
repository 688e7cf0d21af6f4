"""Change request lifecycle engine.

Drives a CR through the fixed approval route. Every transition:

1. validates input and resolves the CR
2. checks the actor (ownership, role, division or assignment)
3. checks the state machine and revision budget
4. writes status + approver role with a compare-and-swap on the status that
   was read, appending the audit log in the same transaction
5. fires notifications and document generation after commit; their failures
   are logged and never undo the transition
"""
import logging
from datetime import datetime
from math import ceil
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .access import (
    build_list_scope,
    require_owner,
    require_role,
    require_same_division,
    require_view,
)
from .config import Settings, get_settings
from .dashboard import build_dashboard
from .documents import DocumentGenerator, FileStorage, attachment_blob_name
from .errors import (
    ForbiddenError,
    IdentifierConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from .models import ApprovalAction, CRStatus, DocumentType, Role, utcnow
from .notifications import Notifier
from .progress import build_progress
from .schemas import (
    ApprovalDecision,
    ApprovalLogRecord,
    AssignmentRecord,
    AttachmentUpload,
    ChangeRequestDetail,
    ChangeRequestListResponse,
    ChangeRequestQuery,
    ChangeRequestRecord,
    CRFormData,
    DashboardResponse,
    DecisionWithReason,
    DeveloperAssignmentCreate,
    DocumentRecord,
    NotificationPayload,
    ProgressView,
    UserRecord,
)
from .state_machine import (
    REVISION_COUNTER_BY_STAGE,
    CRAction,
    check_revision_budget,
    get_allowed_actions,
    status_patch,
    validate_transition,
)
from .store import RecordStore

logger = logging.getLogger("crflow-core.lifecycle")

DEFAULT_APPROVAL_NOTES: dict[Role, str] = {
    Role.MANAGER: "Approved by Manager",
    Role.VP: "Approved by VP IT",
}

VP_REJECT_PREFIX = "[VP REJECT - Manager Approval Voided] "
VP_REVISION_PREFIX = "[VP REVISION - Manager Approval Voided] "


def _validate(schema: type[BaseModel], data: Any, message: str):
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, message) from e


def _notes_suffix(notes: Optional[str]) -> str:
    return f" Notes: {notes}" if notes else ""


class ChangeRequestEngine:
    """State machine driver for change requests.

    Collaborators are injected; the engine holds no global state.
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier,
        document_generator: DocumentGenerator,
        file_storage: FileStorage,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.document_generator = document_generator
        self.file_storage = file_storage
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_or_404(self, cr_id: str) -> ChangeRequestRecord:
        cr = self.store.get_cr(cr_id)
        if cr is None:
            raise NotFoundError("Change request", cr_id)
        return cr

    def _commit(
        self,
        cr: ChangeRequestRecord,
        action: CRAction,
        target: CRStatus,
        extra: Optional[dict] = None,
        expected: Optional[dict] = None,
        log: Optional[tuple[ApprovalAction, UserRecord, Optional[str]]] = None,
        assignments: Optional[list[AssignmentRecord]] = None,
    ) -> ChangeRequestRecord:
        """Persist a transition as one compare-and-swap unit.

        The update only applies if the row still holds the status (and any
        ``expected`` counters) read before validation. Otherwise a concurrent
        writer won and PreconditionError reports the status it left behind.
        """
        now = self.clock()
        patch = {**status_patch(target), **(extra or {})}
        guard = {"status": cr.status, **(expected or {})}

        with self.store.atomic():
            updated = self.store.update_cr(cr.id, patch, expected=guard, now=now)
            if updated is None:
                current = self.store.get_cr(cr.id)
                current_status = current.status if current else None
                logger.warning(
                    f"Lost race on {cr.id}: {action.value} expected {cr.status.value}, "
                    f"found {current_status.value if current_status else 'nothing'}"
                )
                raise PreconditionError(
                    f"Change request {cr.id} was modified concurrently; "
                    f"current status is {current_status.value if current_status else 'unknown'}",
                    current_status=current_status,
                    allowed_actions=[a.value for a in get_allowed_actions(current_status)] if current_status else [],
                )
            if log is not None:
                log_action, actor, notes = log
                self.store.append_approval_log(ApprovalLogRecord(
                    cr_id=cr.id,
                    approver_id=actor.id,
                    action=log_action,
                    notes=notes,
                    created_at=now,
                ))
            if assignments:
                self.store.create_assignments(assignments)
                updated = self.store.get_cr(cr.id)

        logger.info(f"{cr.id}: {cr.status.value} --{action.value}--> {updated.status.value}")
        return updated

    def _safely(self, description: str, func: Callable, *args) -> Any:
        """Run a side effect; failures are logged and swallowed."""
        try:
            return func(*args)
        except Exception:
            logger.exception(f"Side effect failed: {description}")
            return None

    def _notify_user(self, user_id: str, payload: NotificationPayload) -> None:
        self._safely(f"notify user {user_id} ({payload.type})", self.notifier.notify_user, user_id, payload)

    def _notify_role(self, role: Role, payload: NotificationPayload) -> None:
        self._safely(f"notify role {role.value} ({payload.type})", self.notifier.notify_role, role, payload)

    def _notify_division_managers(self, division: Optional[str], payload: NotificationPayload) -> None:
        self._safely(
            f"notify managers of {division} ({payload.type})",
            self.notifier.notify_division_managers, division, payload,
        )

    def _review_stage(self, cr: ChangeRequestRecord, actor: UserRecord, action: CRAction) -> Role:
        """Resolve which approval stage the actor reviews, enforcing division scope."""
        label = action.value.replace("_", " ")
        if actor.role == Role.MANAGER:
            require_same_division(cr, actor, label)
            return Role.MANAGER
        elif actor.role == Role.VP:
            return Role.VP
        raise ForbiddenError(
            f"Only a MANAGER or VP can {label} change requests",
            action=action.value,
            current_role=actor.role,
        )

    def _check_stage_status(self, cr: ChangeRequestRecord, stage: Role, action: CRAction) -> CRStatus:
        transition = validate_transition(cr.status, action)
        if transition.actor_role != stage:
            raise PreconditionError(
                f"Change request {cr.id} is not awaiting {stage.value} approval "
                f"(current status {cr.status.value})",
                current_status=cr.status,
                allowed_actions=[a.value for a in get_allowed_actions(cr.status)],
            )
        return transition.target

    # ------------------------------------------------------------------
    # Requester operations
    # ------------------------------------------------------------------

    def create(self, actor: UserRecord, form_data: dict) -> ChangeRequestRecord:
        """
        Create a draft change request owned by ``actor``.

        Args:
            actor: Requesting user (becomes the owner)
            form_data: Form payload (camelCase keys)

        Returns:
            The new DRAFT change request

        Raises:
            ValidationError: If the form is incomplete or malformed
            NotFoundError: If ``actor`` is not a known user
            IdentifierConflictError: If id allocation collides twice in a row
        """
        form = _validate(CRFormData, form_data, "Invalid change request form")

        fields = {**status_patch(CRStatus.DRAFT), "title": form.title}
        try:
            cr = self.store.create_cr(actor.id, form.to_payload(), fields, self.clock())
        except IdentifierConflictError as e:
            logger.warning(f"Retrying change request creation after id conflict on {e.cr_id}")
            cr = self.store.create_cr(actor.id, form.to_payload(), fields, self.clock(), reseed=True)
        logger.info(f"Created change request {cr.id}")
        return cr

    def update(self, cr_id: str, actor: UserRecord, form_data: dict) -> ChangeRequestRecord:
        """Replace the form of a draft or a CR under revision (owner only)."""
        form = _validate(CRFormData, form_data, "Invalid change request form")
        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "edit")
        transition = validate_transition(cr.status, CRAction.EDIT)
        return self._commit(
            cr, CRAction.EDIT, transition.target,
            extra={"form_data": form.to_payload(), "title": form.title},
        )

    def delete(self, cr_id: str, actor: UserRecord) -> ChangeRequestRecord:
        """
        Soft-delete a draft and remove its documents.

        The id stays reserved; the CR remains visible to its owner only.
        Document rows go in the same transaction as the status change, the
        stored files are removed after it commits.
        """
        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "delete")
        transition = validate_transition(cr.status, CRAction.DELETE)
        documents = self.store.list_documents(cr_id)
        with self.store.atomic():
            deleted = self._commit(cr, CRAction.DELETE, transition.target)
            for document in documents:
                self.store.delete_document(document.id)

        for document in documents:
            self._safely(f"delete stored file {document.file_path}", self.file_storage.delete, document.file_path)
        return deleted

    def submit(self, cr_id: str, actor: UserRecord) -> ChangeRequestRecord:
        """Send a draft to the division managers."""
        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "submit")
        transition = validate_transition(cr.status, CRAction.SUBMIT)
        updated = self._commit(
            cr, CRAction.SUBMIT, transition.target,
            log=(ApprovalAction.SUBMIT, actor, "CR submitted for manager approval"),
        )

        self._notify_division_managers(cr.owner_division, NotificationPayload(
            title="New CR Awaiting Approval",
            message=f"CR {cr_id} from {cr.owner_name or actor.name} is waiting for your approval",
            type="CR_SUBMITTED",
            related_id=cr_id,
        ))
        return updated

    def resubmit(self, cr_id: str, actor: UserRecord) -> ChangeRequestRecord:
        """
        Send a revised CR back for review, consuming one revision cycle.

        Manager revisions return to PENDING_MANAGER; VP revisions return to
        PENDING_VP.

        Raises:
            PreconditionError: If the CR is not under revision or the stage's
                revision limit would be exceeded
        """
        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "resubmit")
        transition = validate_transition(cr.status, CRAction.RESUBMIT)

        stage = Role.MANAGER if cr.status == CRStatus.REVISION_MANAGER else Role.VP
        counter = REVISION_COUNTER_BY_STAGE[stage]
        used = getattr(cr, counter)
        check_revision_budget(cr.status, stage, used)

        updated = self._commit(
            cr, CRAction.RESUBMIT, transition.target,
            extra={counter: used + 1},
            expected={counter: used},
            log=(ApprovalAction.RESUBMIT, actor, "CR resubmitted after revision"),
        )

        payload = NotificationPayload(
            title="Revised CR Awaiting Approval",
            message=f"CR {cr_id} from {cr.owner_name or actor.name} was revised and is waiting for your approval",
            type="CR_RESUBMITTED",
            related_id=cr_id,
        )
        if transition.target == CRStatus.PENDING_MANAGER:
            self._notify_division_managers(cr.owner_division, payload)
        else:
            self._notify_role(Role.VP, payload)
        return updated

    # ------------------------------------------------------------------
    # Approver operations
    # ------------------------------------------------------------------

    def approve(self, cr_id: str, actor: UserRecord, notes: Optional[str] = None) -> ChangeRequestRecord:
        """
        Approve at the actor's stage.

        Manager approval forwards to the VPs. VP approval generates the
        approval document and hands the CR to the IT managers.
        """
        decision = _validate(ApprovalDecision, {"notes": notes}, "Invalid approval")
        cr = self._get_or_404(cr_id)
        stage = self._review_stage(cr, actor, CRAction.APPROVE)
        target = self._check_stage_status(cr, stage, CRAction.APPROVE)

        updated = self._commit(
            cr, CRAction.APPROVE, target,
            log=(ApprovalAction.APPROVE, actor, decision.notes or DEFAULT_APPROVAL_NOTES[stage]),
        )

        if stage == Role.MANAGER:
            self._notify_role(Role.VP, NotificationPayload(
                title="CR Awaiting VP Approval",
                message=f"CR {cr_id} was approved by the Manager and is waiting for VP IT approval",
                type="CR_PENDING_VP",
                related_id=cr_id,
            ))
            self._notify_user(cr.owner_id, NotificationPayload(
                title="CR Approved by Manager",
                message=(
                    f"Your CR {cr_id} was approved by the Manager and is waiting for VP IT approval."
                    f"{_notes_suffix(decision.notes)}"
                ),
                type="CR_APPROVED_MANAGER",
                related_id=cr_id,
            ))
        else:
            reference = self._safely(
                f"generate approval document for {cr_id}",
                self.document_generator.generate_approval_document, cr_id,
            )
            if reference is not None:
                logger.info(f"Generated approval document for {cr_id}: {reference}")
            self._notify_role(Role.MANAGER_IT, NotificationPayload(
                title="CR Needs Developer Mapping",
                message=f"CR {cr_id} was approved by VP IT and needs to be assigned to developers",
                type="CR_NEED_MAPPING",
                related_id=cr_id,
            ))
            self._notify_user(cr.owner_id, NotificationPayload(
                title="CR Approved by VP IT",
                message=f"Your CR {cr_id} was approved by VP IT.{_notes_suffix(decision.notes)}",
                type="CR_APPROVED_VP",
                related_id=cr_id,
            ))
        return updated

    def reject(self, cr_id: str, actor: UserRecord, notes: str) -> ChangeRequestRecord:
        """
        Reject at the actor's stage. Rejection is final.

        A VP rejection also voids the earlier manager approval, which is
        recorded in the log notes.
        """
        decision = _validate(DecisionWithReason, {"notes": notes}, "A rejection reason is required")
        cr = self._get_or_404(cr_id)
        stage = self._review_stage(cr, actor, CRAction.REJECT)
        target = self._check_stage_status(cr, stage, CRAction.REJECT)

        log_notes = decision.notes if stage == Role.MANAGER else VP_REJECT_PREFIX + decision.notes
        updated = self._commit(cr, CRAction.REJECT, target, log=(ApprovalAction.REJECT, actor, log_notes))

        if stage == Role.MANAGER:
            payload = NotificationPayload(
                title="CR Rejected by Manager (Final)",
                message=f"Your CR {cr_id} was rejected by the Manager. Reason: {decision.notes}. "
                        f"This CR cannot be resubmitted.",
                type="CR_REJECTED_FINAL",
                related_id=cr_id,
            )
        else:
            payload = NotificationPayload(
                title="CR Rejected by VP IT (Final)",
                message=f"Your CR {cr_id} was rejected by VP IT. The Manager approval is void. "
                        f"Reason: {decision.notes}",
                type="CR_REJECTED_VP",
                related_id=cr_id,
            )
        self._notify_user(cr.owner_id, payload)
        return updated

    def request_revision(self, cr_id: str, actor: UserRecord, notes: str) -> ChangeRequestRecord:
        """
        Send the CR back to its owner for changes.

        Raises:
            PreconditionError: If the stage has no revision cycles left
                (3 for managers, 2 for VPs)
        """
        decision = _validate(DecisionWithReason, {"notes": notes}, "Revision instructions are required")
        cr = self._get_or_404(cr_id)
        stage = self._review_stage(cr, actor, CRAction.REQUEST_REVISION)
        target = self._check_stage_status(cr, stage, CRAction.REQUEST_REVISION)

        counter = REVISION_COUNTER_BY_STAGE[stage]
        used = getattr(cr, counter)
        check_revision_budget(cr.status, stage, used)

        log_notes = decision.notes if stage == Role.MANAGER else VP_REVISION_PREFIX + decision.notes
        updated = self._commit(
            cr, CRAction.REQUEST_REVISION, target,
            expected={counter: used},
            log=(ApprovalAction.REQUEST_REVISION, actor, log_notes),
        )

        if stage == Role.MANAGER:
            payload = NotificationPayload(
                title="CR Needs Revision",
                message=f"Your CR {cr_id} needs revision. Instructions: {decision.notes}",
                type="CR_REVISION_MANAGER",
                related_id=cr_id,
            )
        else:
            payload = NotificationPayload(
                title="CR Needs Revision from VP IT",
                message=f"Your CR {cr_id} needs revision from VP IT. The Manager approval is void. "
                        f"Instructions: {decision.notes}",
                type="CR_REVISION_VP",
                related_id=cr_id,
            )
        self._notify_user(cr.owner_id, payload)
        return updated

    # ------------------------------------------------------------------
    # IT operations
    # ------------------------------------------------------------------

    def assign_developers(
        self,
        cr_id: str,
        actor: UserRecord,
        developer_ids: list[str],
        notes: Optional[str] = None,
    ) -> ChangeRequestRecord:
        """
        Assign one or more developers to an approved CR.

        All ids must belong to existing DEV users; otherwise nothing is
        assigned.
        """
        request = _validate(
            DeveloperAssignmentCreate,
            {"developer_ids": developer_ids, "notes": notes},
            "Invalid developer assignment",
        )
        cr = self._get_or_404(cr_id)
        require_role(actor, Role.MANAGER_IT, "assign developers")
        transition = validate_transition(cr.status, CRAction.ASSIGN)

        unique_ids = list(dict.fromkeys(request.developer_ids))
        developers = self.store.find_users(role=Role.DEV, ids=unique_ids)
        if len(developers) != len(unique_ids):
            found = {dev.id for dev in developers}
            invalid = [dev_id for dev_id in unique_ids if dev_id not in found]
            logger.warning(f"Rejected assignment on {cr_id}: not developers {invalid}")
            raise PreconditionError(
                f"One or more developers are invalid: {', '.join(invalid)}",
                current_status=cr.status,
                allowed_actions=[a.value for a in get_allowed_actions(cr.status)],
            )

        now = self.clock()
        assignments = [
            AssignmentRecord(
                cr_id=cr_id,
                developer_id=dev_id,
                assigned_by_id=actor.id,
                notes=request.notes,
                assigned_at=now,
            )
            for dev_id in unique_ids
        ]
        updated = self._commit(cr, CRAction.ASSIGN, transition.target, assignments=assignments)

        for dev_id in unique_ids:
            self._notify_user(dev_id, NotificationPayload(
                title="New CR Assigned",
                message=f"CR {cr_id} has been assigned to you.{_notes_suffix(request.notes)}",
                type="CR_ASSIGNED",
                related_id=cr_id,
            ))
        names = ", ".join(dev.name for dev in developers)
        self._notify_user(cr.owner_id, NotificationPayload(
            title="CR Assigned to Developers",
            message=f"Your CR {cr_id} has been assigned to: {names}.{_notes_suffix(request.notes)}",
            type="CR_ASSIGNED_DEV",
            related_id=cr_id,
        ))
        return updated

    def complete(self, cr_id: str, actor: UserRecord) -> ChangeRequestRecord:
        """Mark an assigned CR as done (IT manager or an assigned developer)."""
        cr = self._get_or_404(cr_id)
        transition = validate_transition(cr.status, CRAction.COMPLETE)

        if actor.role == Role.DEV:
            if actor.id not in cr.developer_ids:
                raise ForbiddenError(
                    "You are not assigned to this change request",
                    action=CRAction.COMPLETE.value,
                    current_role=actor.role,
                )
        elif actor.role != Role.MANAGER_IT:
            raise ForbiddenError(
                "Only the IT manager or an assigned developer can complete a change request",
                action=CRAction.COMPLETE.value,
                current_role=actor.role,
                required_role=Role.MANAGER_IT,
            )

        updated = self._commit(cr, CRAction.COMPLETE, transition.target)
        self._notify_user(cr.owner_id, NotificationPayload(
            title="CR Completed",
            message=f"Your CR {cr_id} has been completed by the development team.",
            type="CR_COMPLETED",
            related_id=cr_id,
        ))
        return updated

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def add_attachment(
        self,
        cr_id: str,
        actor: UserRecord,
        file_name: str,
        data: bytes,
        mime_type: str,
    ) -> DocumentRecord:
        """
        Upload a file to a draft or a CR under revision.

        Raises:
            ValidationError: If the file type or size is not accepted
            PreconditionError: If the CR is not editable or already has the
                maximum number of documents
        """
        upload = _validate(
            AttachmentUpload,
            {"file_name": file_name, "mime_type": mime_type, "file_size": len(data)},
            "Invalid attachment",
        )
        if upload.mime_type not in self.settings.allowed_mime_types:
            raise ValidationError(
                "File type not allowed",
                errors=[{"field": "mime_type", "message": f"{upload.mime_type} is not an accepted file type"}],
            )
        if upload.file_size > self.settings.max_attachment_size:
            raise ValidationError(
                "File too large",
                errors=[{
                    "field": "file_size",
                    "message": f"Maximum size is {self.settings.max_attachment_size} bytes",
                }],
            )

        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "attach files to")
        validate_transition(cr.status, CRAction.ATTACH)
        self._check_document_budget(cr)

        timestamp_ms = int(self.clock().timestamp() * 1000)
        path = self.file_storage.upload(
            attachment_blob_name(cr_id, upload.file_name, timestamp_ms), data, upload.mime_type
        )
        try:
            with self.store.atomic():
                current = self._get_or_404(cr_id)
                validate_transition(current.status, CRAction.ATTACH)
                self._check_document_budget(current)
                document = self.store.add_document(DocumentRecord(
                    cr_id=cr_id,
                    file_name=upload.file_name,
                    file_path=path,
                    file_size=upload.file_size,
                    mime_type=upload.mime_type,
                    file_type=DocumentType.ATTACHMENT,
                    created_at=self.clock(),
                ))
        except Exception:
            self._safely(f"remove orphaned upload {path}", self.file_storage.delete, path)
            raise

        logger.info(f"Attached {upload.file_name} to {cr_id}")
        return document

    def _check_document_budget(self, cr: ChangeRequestRecord) -> None:
        count = self.store.count_documents(cr.id)
        limit = self.settings.max_attachments_per_cr
        if count >= limit:
            raise PreconditionError(
                f"A change request can hold at most {limit} documents",
                current_status=cr.status,
                allowed_actions=[a.value for a in get_allowed_actions(cr.status)],
            )

    def delete_attachment(self, cr_id: str, actor: UserRecord, document_id: int) -> None:
        """Remove an attachment from a draft or a CR under revision."""
        cr = self._get_or_404(cr_id)
        require_owner(cr, actor, "remove files from")
        validate_transition(cr.status, CRAction.ATTACH)

        document = self.store.get_document(cr_id, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)

        self.store.delete_document(document.id)
        self._safely(f"delete stored file {document.file_path}", self.file_storage.delete, document.file_path)
        logger.info(f"Removed document {document_id} from {cr_id}")

    def open_document(self, cr_id: str, actor: UserRecord, document_id: int) -> tuple[DocumentRecord, bytes]:
        """Fetch a document's metadata and content for any user who can view the CR."""
        cr = self._get_or_404(cr_id)
        require_view(cr, actor)
        document = self.store.get_document(cr_id, document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document, self.file_storage.download(document.file_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_change_request(self, cr_id: str, actor: UserRecord) -> ChangeRequestDetail:
        """Get a CR with its audit trail, assignments and documents."""
        cr = self._get_or_404(cr_id)
        require_view(cr, actor)
        return ChangeRequestDetail(
            change_request=cr,
            approval_logs=self.store.list_approval_logs(cr_id),
            assignments=self.store.list_assignments(cr_id),
            documents=self.store.list_documents(cr_id),
            allowed_actions=[a.value for a in get_allowed_actions(cr.status)],
        )

    def list_change_requests(self, actor: UserRecord, **filters) -> ChangeRequestListResponse:
        """
        List the CRs visible to ``actor``.

        Accepts the ChangeRequestQuery fields (page, page_size, status,
        search, sort_by, sort_order). A status the actor's role cannot see
        yields an empty page.
        """
        filters.setdefault("page_size", self.settings.default_page_size)
        query = _validate(ChangeRequestQuery, filters, "Invalid list query")
        page_size = min(query.page_size, self.settings.max_page_size)

        scope = build_list_scope(actor, query.status)
        items, total = self.store.list_crs(
            scope,
            search=query.search,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
            skip=(query.page - 1) * page_size,
            limit=page_size,
        )
        return ChangeRequestListResponse(
            items=items,
            total=total,
            page=query.page,
            page_size=page_size,
            total_pages=ceil(total / page_size) if total > 0 else 0,
        )

    def get_dashboard(self, actor: UserRecord) -> DashboardResponse:
        return build_dashboard(self.store, actor, self.settings)

    def get_history(self, cr_id: str, actor: UserRecord) -> list[ApprovalLogRecord]:
        cr = self._get_or_404(cr_id)
        require_view(cr, actor)
        return self.store.list_approval_logs(cr_id)

    def get_progress(self, cr_id: str, actor: UserRecord) -> ProgressView:
        """Six-milestone progress view of a CR."""
        cr = self._get_or_404(cr_id)
        require_view(cr, actor)
        return build_progress(cr, self.store.list_approval_logs(cr_id), self.store.list_assignments(cr_id))
