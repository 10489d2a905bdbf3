"""Executes workflow plans against the repositories.

Each action follows the same sequence:

1. load the request and check the caller's view is current,
2. ask the engine for a plan (authorization and validation happen there),
3. apply the status change as a conditional write on the expected status,
4. apply the plan's required effects, reverting the status change if they fail,
5. run the best-effort effects, collecting failures as warnings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.casehub.config import settings
from src.casehub.domain.models.case import Case
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.consultation import Consultation, ConsultationStatus
from src.casehub.domain.models.document import Document
from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.domain.models.report import Report
from src.casehub.domain.workflow.engine import (
    CloseConsultation,
    CreateReport,
    Notify,
    PurgeRequestRecords,
    RecordAudit,
    RequestEdit,
    RequestWorkflowEngine,
    ScheduleConsultation,
    SetCaseStatus,
    TransitionPlan,
    workflow_engine,
)
from src.casehub.domain.workflow.transitions import RequestAction, allowed_actions
from src.casehub.errors import (
    ConcurrentUpdateError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.infra.storage.blobs import BlobStorageBackend, blob_storage_backend, build_object_path
from src.casehub.services.audit.service import audit_service
from src.casehub.services.cases.service import case_service
from src.casehub.services.documents.service import FailedUpload, Upload, document_service
from src.casehub.services.notifications.service import notification_service
from src.casehub.services.profiles.service import profile_service
from src.casehub.services.realtime.service import change_feed

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransitionResult(BaseModel):
    action: RequestAction
    # None once the request has been deleted.
    request: Optional[CaseRequest] = None
    deleted: bool = False
    consultation: Optional[Consultation] = None
    report: Optional[Report] = None
    warnings: List[str] = Field(default_factory=list)


class RequestCreationResult(BaseModel):
    request: CaseRequest
    documents: List[Document] = Field(default_factory=list)
    failed_uploads: List[FailedUpload] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RequestWorkflowService:
    def __init__(
        self,
        repos: Repositories = repositories,
        engine: RequestWorkflowEngine = workflow_engine,
        clock: Callable[[], datetime] = _utcnow,
        storage: Optional[BlobStorageBackend] = None,
    ) -> None:
        self._repos = repos
        self._engine = engine
        self._clock = clock
        self._storage = storage

    @property
    def storage(self) -> BlobStorageBackend:
        return self._storage or blob_storage_backend

    # Queries

    def get_request(self, identity: Identity, request_id: UUID) -> CaseRequest:
        request = self._repos.requests.get(request_id)
        if request is None or identity.user_id not in (
            request.attorney_id,
            request.physician_id,
            request.specialist_id,
        ):
            raise NotFoundError("Case request not found")
        return request

    def list_requests(
        self,
        identity: Identity,
        *,
        case_id: Optional[UUID] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[CaseRequest]:
        filters: Dict[str, Any] = {"case_id": case_id, "status": status}
        if identity.role == UserRole.ATTORNEY:
            filters["attorney_id"] = identity.user_id
        elif identity.role == UserRole.GENERAL_PHYSICIAN:
            filters["physician_id"] = identity.user_id
        else:
            filters["specialist_id"] = identity.user_id
        return self._repos.requests.list_by_filters(**filters)

    def allowed_actions(self, identity: Identity, request_id: UUID) -> List[RequestAction]:
        return allowed_actions(self.get_request(identity, request_id), identity)

    # Creation

    def create_request(
        self,
        identity: Identity,
        case_id: UUID,
        *,
        physician_id: UUID,
        evidence_type: str,
        attachments: Sequence[Upload] = (),
        deadline: Optional[datetime] = None,
        description: Optional[str] = None,
        specialist_id: Optional[UUID] = None,
    ) -> RequestCreationResult:
        case = self._repos.cases.get(case_id)
        if case is None:
            raise NotFoundError("Case not found")

        # Files that fail validation do not count towards the mandatory
        # categories, and any of them rejects the request before it is written.
        accepted_categories = []
        rejected: List[FailedUpload] = []
        for upload in attachments:
            reason = document_service.rejection_reason(upload)
            if reason is None:
                accepted_categories.append(upload.category)
            else:
                rejected.append(FailedUpload(file_name=upload.file_name, category=upload.category, reason=reason))

        now = self._clock()
        plan = self._engine.plan_create(
            identity,
            case,
            physician_id=physician_id,
            physician_role=profile_service.get_role(physician_id),
            evidence_type=evidence_type,
            attachment_categories=accepted_categories,
            has_active_request=self._repos.requests.find_active_for_case(case_id) is not None,
            now=now,
            deadline=deadline,
            description=description,
            specialist_id=specialist_id,
            specialist_role=profile_service.get_role(specialist_id) if specialist_id else None,
        )
        if rejected:
            raise ValidationError(
                "Some attachments cannot be stored",
                details={"invalid_files": [f.model_dump(mode="json") for f in rejected]},
            )

        request = CaseRequest(
            id=uuid4(),
            status=RequestStatus.PENDING,
            created_at=now,
            updated_at=now,
            **plan.changes,
        )
        if not self._repos.requests.add_if_no_active(request):
            # Another request was opened for the case since the check above.
            raise InvalidTransitionError("Case already has an active request", details={"case_id": str(case_id)})

        documents, failed = document_service.upload_attachments(identity, case_id, attachments)
        warnings = self._run_effects(plan, request, case)
        warnings.extend(f"Upload failed for {f.file_name}: {f.reason}" for f in failed)
        change_feed.publish("case_requests", "INSERT", request.id, case_id=case_id)
        logger.info("Case request %s created for case %s", request.id, case_id)
        return RequestCreationResult(request=request, documents=documents, failed_uploads=failed, warnings=warnings)

    # Actions

    def accept(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        scheduled_at: datetime,
        report_forecast_date: datetime,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        plan = self._engine.plan_accept(
            request,
            identity,
            scheduled_at=scheduled_at,
            report_forecast_date=report_forecast_date,
            now=self._clock(),
        )
        return self._execute(request, plan)

    def delete(
        self, identity: Identity, request_id: UUID, *, expected_status: Optional[RequestStatus] = None
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_delete(request, identity))

    def request_adjustment(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        reason: Optional[str] = None,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_request_adjustment(request, identity, reason=reason))

    def allow_edit(
        self, identity: Identity, request_id: UUID, *, expected_status: Optional[RequestStatus] = None
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_allow_edit(request, identity))

    def deny_adjustment(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        reason: Optional[str] = None,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_deny_adjustment(request, identity, reason=reason))

    def edit(
        self,
        identity: Identity,
        request_id: UUID,
        edit: RequestEdit,
        *,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        physician_role = profile_service.get_role(edit.physician_id) if edit.physician_id else None
        specialist_role = profile_service.get_role(edit.specialist_id) if edit.specialist_id else None
        plan = self._engine.plan_edit(
            request,
            identity,
            edit,
            now=self._clock(),
            physician_role=physician_role,
            specialist_role=specialist_role,
        )
        return self._execute(request, plan)

    def propose_cancellation(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        reason: Optional[str] = None,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_propose_cancellation(request, identity, reason=reason))

    def confirm_cancellation(
        self, identity: Identity, request_id: UUID, *, expected_status: Optional[RequestStatus] = None
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_confirm_cancellation(request, identity))

    def withdraw_cancellation(
        self, identity: Identity, request_id: UUID, *, expected_status: Optional[RequestStatus] = None
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_withdraw_cancellation(request, identity))

    def reject_cancellation(
        self, identity: Identity, request_id: UUID, *, expected_status: Optional[RequestStatus] = None
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        return self._execute(request, self._engine.plan_reject_cancellation(request, identity))

    def deliver_report(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        title: str,
        content: Optional[str] = None,
        file: Optional[Upload] = None,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        plan = self._engine.plan_deliver_report(request, identity, title=title, content=content)
        return self._execute_with_file(request, plan, file, "final_report")

    def submit_pre_report(
        self,
        identity: Identity,
        request_id: UUID,
        *,
        title: str,
        content: Optional[str] = None,
        file: Optional[Upload] = None,
        expected_status: Optional[RequestStatus] = None,
    ) -> TransitionResult:
        request = self._load(request_id, expected_status)
        plan = self._engine.plan_submit_pre_report(request, identity, title=title, content=content)
        return self._execute_with_file(request, plan, file, "pre_report")

    # Execution

    def _load(self, request_id: UUID, expected_status: Optional[RequestStatus]) -> CaseRequest:
        request = self._repos.requests.get(request_id)
        if request is None:
            raise NotFoundError("Case request not found")
        if expected_status is not None and request.status != expected_status:
            raise ConcurrentUpdateError(
                "Request changed since it was loaded",
                details={"expected_status": expected_status.value, "current_status": request.status.value},
            )
        return request

    def _execute_with_file(
        self,
        request: CaseRequest,
        plan: TransitionPlan,
        file: Optional[Upload],
        category: str,
    ) -> TransitionResult:
        if file is None:
            return self._execute(request, plan)
        path = build_object_path(str(request.id), category, file.file_name)
        self.storage.save_file(settings.reports_bucket, path, file.content, content_type=file.content_type)
        try:
            return self._execute(request, plan, report_file_path=path)
        except Exception:
            self.storage.delete_file(settings.reports_bucket, path)
            raise

    def _execute(
        self,
        request: CaseRequest,
        plan: TransitionPlan,
        *,
        report_file_path: Optional[str] = None,
    ) -> TransitionResult:
        case = self._repos.cases.get(request.case_id)

        if plan.deletes:
            if not self._repos.requests.delete_if_status(
                request.id, request.status, expected_version=request.version
            ):
                raise self._lost_race(request, plan)
            warnings = self._run_effects(plan, request, case)
            change_feed.publish("case_requests", "DELETE", request.id, case_id=request.case_id)
            return TransitionResult(action=plan.action, deleted=True, warnings=warnings)

        changes = dict(plan.changes)
        changes["updated_at"] = self._clock()
        updated = self._repos.requests.update_if_status(
            request.id, request.status, changes, expected_version=request.version
        )
        if updated is None:
            raise self._lost_race(request, plan)

        consultation: Optional[Consultation] = None
        report: Optional[Report] = None
        try:
            for effect in plan.required:
                if isinstance(effect, ScheduleConsultation):
                    consultation = self._schedule_consultation(updated, case, effect)
                elif isinstance(effect, CreateReport):
                    report = self._create_report(updated, plan, effect, report_file_path)
        except Exception:
            self._compensate(request, updated, plan)
            raise

        warnings = self._run_effects(plan, updated, case)
        change_feed.publish("case_requests", "UPDATE", updated.id, case_id=updated.case_id)
        logger.info(
            "Case request %s: %s (%s -> %s)",
            updated.id,
            plan.action.value,
            request.status.value,
            updated.status.value,
        )
        return TransitionResult(
            action=plan.action,
            request=updated,
            consultation=consultation,
            report=report,
            warnings=warnings,
        )

    def _lost_race(self, request: CaseRequest, plan: TransitionPlan) -> ConcurrentUpdateError:
        logger.info("Conditional write lost for request %s during %s", request.id, plan.action.value)
        return ConcurrentUpdateError(
            "Request was modified concurrently; reload and retry",
            details={"expected_status": request.status.value, "expected_version": request.version},
        )

    def _compensate(self, original: CaseRequest, updated: CaseRequest, plan: TransitionPlan) -> None:
        restore = {key: getattr(original, key) for key in plan.changes}
        restore["updated_at"] = original.updated_at
        try:
            reverted = self._repos.requests.update_if_status(
                updated.id, updated.status, restore, expected_version=updated.version
            )
        except StoreError:
            logger.exception("Failed to revert request %s after %s", original.id, plan.action.value)
            return
        if reverted is None:
            logger.error("Request %s changed before it could be reverted", original.id)

    def _schedule_consultation(
        self, request: CaseRequest, case: Optional[Case], effect: ScheduleConsultation
    ) -> Consultation:
        now = self._clock()
        existing = self._repos.consultations.get_by_request(request.id)
        if existing is not None:
            consultation = existing.model_copy(
                update={
                    "physician_id": request.physician_id,
                    "scheduled_at": effect.scheduled_at,
                    "status": ConsultationStatus.SCHEDULED,
                    "updated_at": now,
                }
            )
        else:
            consultation = Consultation(
                id=uuid4(),
                case_request_id=request.id,
                physician_id=request.physician_id,
                patient_name=case.patient_name if case is not None else "",
                scheduled_at=effect.scheduled_at,
                status=ConsultationStatus.SCHEDULED,
                created_at=now,
                updated_at=now,
            )
        self._repos.consultations.save(consultation)
        change_feed.publish("consultations", "UPSERT", consultation.id, case_id=request.case_id)
        return consultation

    def _create_report(
        self,
        request: CaseRequest,
        plan: TransitionPlan,
        effect: CreateReport,
        file_path: Optional[str],
    ) -> Report:
        now = self._clock()
        report = Report(
            id=uuid4(),
            case_request_id=request.id,
            author_id=plan.actor_id,
            title=effect.title,
            type=effect.report_type,
            status=effect.status,
            content=effect.content,
            file_path=file_path,
            created_at=now,
            updated_at=now,
        )
        self._repos.reports.save(report)
        change_feed.publish("reports", "INSERT", report.id, case_id=request.case_id)
        return report

    def _run_effects(self, plan: TransitionPlan, request: CaseRequest, case: Optional[Case]) -> List[str]:
        """Apply best-effort effects; each failure becomes a warning."""

        warnings: List[str] = []
        for effect in plan.effects:
            try:
                self._apply_effect(effect, plan, request, case)
            except Exception:
                logger.exception("%s failed after %s on request %s", type(effect).__name__, plan.action.value, request.id)
                warnings.append(f"{type(effect).__name__} failed")
        return warnings

    def _apply_effect(self, effect: Any, plan: TransitionPlan, request: CaseRequest, case: Optional[Case]) -> None:
        if isinstance(effect, Notify):
            notification_service.notify_user(
                effect.recipient_id,
                title=effect.title,
                message=effect.message,
                type=effect.type,
                link=effect.link,
            )
        elif isinstance(effect, RecordAudit):
            details = {
                "from_status": plan.from_status.value if plan.from_status else None,
                "to_status": plan.to_status.value if plan.to_status else None,
                **effect.details,
            }
            entry = audit_service.log_event(
                action=effect.action,
                resource_type="case_request",
                resource_id=str(request.id),
                user_id=plan.actor_id,
                details=details,
            )
            if entry is None:
                raise StoreError("Audit entry was not persisted")
        elif isinstance(effect, SetCaseStatus):
            if case is not None:
                case_service.set_status(case.id, effect.status)
        elif isinstance(effect, CloseConsultation):
            consultation = self._repos.consultations.get_by_request(request.id)
            if consultation is not None:
                self._repos.consultations.save(
                    consultation.model_copy(update={"status": effect.status, "updated_at": self._clock()})
                )
        elif isinstance(effect, PurgeRequestRecords):
            self._repos.consultations.delete_by_request(request.id)
            self._repos.reports.delete_by_request(request.id)
        else:
            raise TypeError(f"Unknown effect {effect!r}")


workflow_service = RequestWorkflowService()
