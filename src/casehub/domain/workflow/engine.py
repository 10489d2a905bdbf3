"""RequestWorkflowEngine: decides transitions and the side effects they imply.

The engine is pure. It receives the current request (and, for creation, the
case), the caller's identity and the clock reading, validates the action
against the transition table and returns a :class:`TransitionPlan`. It never
touches a repository; :mod:`src.casehub.services.workflow.service` executes
plans.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel

from src.casehub.domain.models.case import Case, CaseStatus
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.consultation import ConsultationStatus
from src.casehub.domain.models.document import MANDATORY_CATEGORIES, DocumentCategory
from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.domain.models.report import ReportStatus, ReportType
from src.casehub.domain.workflow.transitions import (
    COUNTERPARTY_ONLY,
    EDIT_TARGETS,
    INITIATOR_ONLY,
    PHYSICIAN_MUTABLE_STATUSES,
    TRANSITIONS,
    Party,
    RequestAction,
    is_locked,
    parties_for,
)
from src.casehub.errors import (
    AuthorizationError,
    CancellationPendingError,
    InvalidTransitionError,
    ValidationError,
)


# Side-effect commands. "Required" commands are applied together with the
# status change; the rest are best-effort.


@dataclass(frozen=True)
class ScheduleConsultation:
    scheduled_at: datetime


@dataclass(frozen=True)
class CreateReport:
    report_type: ReportType
    status: ReportStatus
    title: str
    content: Optional[str] = None


@dataclass(frozen=True)
class CloseConsultation:
    status: ConsultationStatus


@dataclass(frozen=True)
class PurgeRequestRecords:
    """Remove consultations and reports of a deleted request."""


@dataclass(frozen=True)
class Notify:
    recipient_id: UUID
    title: str
    message: str
    type: str = "case_request"
    link: Optional[str] = None


@dataclass(frozen=True)
class RecordAudit:
    action: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SetCaseStatus:
    status: CaseStatus


RequiredEffect = Union[ScheduleConsultation, CreateReport]
SideEffect = Union[CloseConsultation, PurgeRequestRecords, Notify, RecordAudit, SetCaseStatus]


@dataclass
class TransitionPlan:
    action: RequestAction
    actor_id: UUID
    from_status: Optional[RequestStatus]
    # None when the request is deleted.
    to_status: Optional[RequestStatus]
    changes: Dict[str, Any] = field(default_factory=dict)
    required: List[RequiredEffect] = field(default_factory=list)
    effects: List[SideEffect] = field(default_factory=list)
    deletes: bool = False


class RequestEdit(BaseModel):
    """Mutable request fields. Only fields explicitly set are applied."""

    physician_id: Optional[UUID] = None
    specialist_id: Optional[UUID] = None
    evidence_type: Optional[str] = None
    deadline: Optional[datetime] = None
    description: Optional[str] = None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons are always well-defined."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minute_floor(now: datetime) -> datetime:
    return as_utc(now).replace(second=0, microsecond=0)


def ensure_not_past(field_name: str, value: Optional[datetime], now: datetime) -> Optional[datetime]:
    """Reject ``value`` if it falls before the current minute.

    Submissions are compared at minute granularity, so a date inside the
    current minute is accepted.
    """

    if value is None:
        return None
    normalized = as_utc(value)
    if normalized < minute_floor(now):
        raise ValidationError(
            f"{field_name} cannot be in the past",
            details={"field": field_name, "value": normalized.isoformat()},
        )
    return normalized


def _case_link(case_id: UUID) -> str:
    return f"/cases/{case_id}"


class RequestWorkflowEngine:
    # Authorization

    def authorize(self, request: CaseRequest, identity: Identity, action: RequestAction) -> Party:
        """Check that ``identity`` may perform ``action`` on ``request`` now.

        Returns the capacity the caller acts in. Raises AuthorizationError for
        callers outside the request or in the wrong capacity, and
        InvalidTransitionError when the status does not allow the action.
        """

        transition = TRANSITIONS[action]
        parties = parties_for(request, identity)
        if not parties:
            raise AuthorizationError("Only the parties involved in this request may act on it")

        acting = parties & transition.parties
        if not acting:
            raise AuthorizationError(
                f"A {identity.role.value} cannot perform '{action.value}' on this request"
            )

        if request.status not in transition.sources:
            if action == RequestAction.EDIT:
                raise InvalidTransitionError(
                    "Request is locked for editing",
                    details={"status": request.status.value},
                )
            raise InvalidTransitionError(
                f"Cannot perform '{action.value}' while request is '{request.status.value}'",
                details={"status": request.status.value, "action": action.value},
            )

        initiator = request.cancel_requested_by
        if action in COUNTERPARTY_ONLY and initiator == identity.user_id:
            raise CancellationPendingError(
                "Cancellation is awaiting confirmation from the other party",
                details={"cancel_requested_by": str(initiator)},
            )
        if action in INITIATOR_ONLY and initiator != identity.user_id:
            raise AuthorizationError("Only the party who proposed the cancellation can withdraw it")

        return sorted(acting, key=lambda p: p.value)[0]

    # Creation

    def plan_create(
        self,
        identity: Identity,
        case: Case,
        *,
        physician_id: UUID,
        physician_role: Optional[UserRole],
        evidence_type: str,
        attachment_categories: Iterable[DocumentCategory],
        has_active_request: bool,
        now: datetime,
        deadline: Optional[datetime] = None,
        description: Optional[str] = None,
        specialist_id: Optional[UUID] = None,
        specialist_role: Optional[UserRole] = None,
    ) -> TransitionPlan:
        if identity.role != UserRole.ATTORNEY or case.attorney_id != identity.user_id:
            raise AuthorizationError("Only the attorney who owns the case can open a request")
        if has_active_request:
            raise InvalidTransitionError(
                "Case already has an active request",
                details={"case_id": str(case.id)},
            )
        if physician_role != UserRole.GENERAL_PHYSICIAN:
            raise ValidationError(
                "Assigned physician must be a registered general physician",
                details={"physician_id": str(physician_id)},
            )
        if specialist_id is not None and specialist_role != UserRole.SPECIALIST:
            raise ValidationError(
                "Assigned specialist must be a registered specialist",
                details={"specialist_id": str(specialist_id)},
            )
        if not evidence_type or not evidence_type.strip():
            raise ValidationError("Evidence type is required", details={"field": "evidence_type"})

        normalized_deadline = ensure_not_past("deadline", deadline, now)

        provided = set(attachment_categories)
        missing = sorted(c.value for c in MANDATORY_CATEGORIES - provided)
        if missing:
            raise ValidationError(
                "Mandatory attachments are missing",
                details={"missing_categories": missing},
            )

        plan = TransitionPlan(
            action=RequestAction.CREATE,
            actor_id=identity.user_id,
            from_status=None,
            to_status=RequestStatus.PENDING,
            changes={
                "case_id": case.id,
                "attorney_id": identity.user_id,
                "physician_id": physician_id,
                "specialist_id": specialist_id,
                "evidence_type": evidence_type.strip(),
                "deadline": normalized_deadline,
                "description": description,
            },
        )
        plan.effects.append(
            Notify(
                recipient_id=physician_id,
                title="New evidence request",
                message=f"You have a new {evidence_type.strip()} request for patient {case.patient_name}.",
                link=_case_link(case.id),
            )
        )
        plan.effects.append(
            RecordAudit(
                action="create_case_request",
                details={"case_id": str(case.id), "physician_id": str(physician_id)},
            )
        )
        if case.status == CaseStatus.OPEN:
            plan.effects.append(SetCaseStatus(CaseStatus.IN_PROGRESS))
        return plan

    # Physician acceptance

    def plan_accept(
        self,
        request: CaseRequest,
        identity: Identity,
        *,
        scheduled_at: datetime,
        report_forecast_date: datetime,
        now: datetime,
    ) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.ACCEPT)
        if scheduled_at is None or report_forecast_date is None:
            raise ValidationError("Consultation date and report forecast date are required")
        scheduled = ensure_not_past("scheduled_at", scheduled_at, now)
        forecast = ensure_not_past("report_forecast_date", report_forecast_date, now)

        plan = self._plan(request, identity, RequestAction.ACCEPT, RequestStatus.SCHEDULING)
        plan.changes["report_forecast_date"] = forecast
        plan.required.append(ScheduleConsultation(scheduled_at=scheduled))
        plan.effects.append(
            Notify(
                recipient_id=request.attorney_id,
                title="Request accepted",
                message=(
                    f"Consultation scheduled for {scheduled:%Y-%m-%d %H:%M} UTC. "
                    f"Report expected by {forecast:%Y-%m-%d %H:%M} UTC."
                ),
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(SetCaseStatus(CaseStatus.AWAITING_REPORT))
        plan.effects.append(
            RecordAudit(
                action="accept_case_request",
                details={"scheduled_at": scheduled.isoformat(), "report_forecast_date": forecast.isoformat()},
            )
        )
        return plan

    def plan_delete(self, request: CaseRequest, identity: Identity) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.DELETE)
        plan = self._plan(request, identity, RequestAction.DELETE, None, deletes=True)
        plan.effects.append(PurgeRequestRecords())
        plan.effects.append(
            Notify(
                recipient_id=request.physician_id,
                title="Request withdrawn",
                message="The attorney withdrew a pending evidence request.",
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(SetCaseStatus(CaseStatus.OPEN))
        plan.effects.append(RecordAudit(action="delete_case_request", details={"case_id": str(request.case_id)}))
        return plan

    # Adjustment negotiation

    def plan_request_adjustment(
        self, request: CaseRequest, identity: Identity, *, reason: Optional[str] = None
    ) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.REQUEST_ADJUSTMENT)
        plan = self._plan(request, identity, RequestAction.REQUEST_ADJUSTMENT, RequestStatus.ADJUSTMENT_REQUESTED)
        message = "The attorney asked to adjust an accepted request."
        if reason:
            message = f"{message} Reason: {reason}"
        plan.effects.append(
            Notify(
                recipient_id=request.physician_id,
                title="Adjustment requested",
                message=message,
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="request_adjustment", details={"has_reason": bool(reason)}))
        return plan

    def plan_allow_edit(self, request: CaseRequest, identity: Identity) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.ALLOW_EDIT)
        plan = self._plan(request, identity, RequestAction.ALLOW_EDIT, RequestStatus.ADJUSTING)
        plan.effects.append(
            Notify(
                recipient_id=request.attorney_id,
                title="Editing allowed",
                message="The physician released the request for editing.",
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="allow_edit"))
        return plan

    def plan_deny_adjustment(
        self, request: CaseRequest, identity: Identity, *, reason: Optional[str] = None
    ) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.DENY_ADJUSTMENT)
        plan = self._plan(request, identity, RequestAction.DENY_ADJUSTMENT, RequestStatus.SCHEDULING)
        message = "The physician kept the request as scheduled."
        if reason:
            message = f"{message} Reason: {reason}"
        plan.effects.append(
            Notify(
                recipient_id=request.attorney_id,
                title="Adjustment declined",
                message=message,
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="deny_adjustment", details={"has_reason": bool(reason)}))
        return plan

    def plan_edit(
        self,
        request: CaseRequest,
        identity: Identity,
        edit: RequestEdit,
        *,
        now: datetime,
        physician_role: Optional[UserRole] = None,
        specialist_role: Optional[UserRole] = None,
    ) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.EDIT)
        # authorize() already rejects locked statuses; keep the lock predicate
        # as the single source of truth should the table ever diverge.
        if is_locked(request.status):
            raise InvalidTransitionError("Request is locked for editing", details={"status": request.status.value})

        provided = edit.model_fields_set
        changes: Dict[str, Any] = {}

        if "physician_id" in provided and edit.physician_id != request.physician_id:
            if edit.physician_id is None:
                raise ValidationError("A request must keep an assigned physician", details={"field": "physician_id"})
            if request.status not in PHYSICIAN_MUTABLE_STATUSES:
                raise InvalidTransitionError(
                    "Assigned physician can only change while the request is pending or open for adjustment",
                    details={"status": request.status.value},
                )
            if physician_role != UserRole.GENERAL_PHYSICIAN:
                raise ValidationError(
                    "Assigned physician must be a registered general physician",
                    details={"physician_id": str(edit.physician_id)},
                )
            changes["physician_id"] = edit.physician_id

        if "specialist_id" in provided and edit.specialist_id != request.specialist_id:
            if edit.specialist_id is not None and specialist_role != UserRole.SPECIALIST:
                raise ValidationError(
                    "Assigned specialist must be a registered specialist",
                    details={"specialist_id": str(edit.specialist_id)},
                )
            changes["specialist_id"] = edit.specialist_id

        if "evidence_type" in provided:
            if not edit.evidence_type or not edit.evidence_type.strip():
                raise ValidationError("Evidence type is required", details={"field": "evidence_type"})
            changes["evidence_type"] = edit.evidence_type.strip()

        if "deadline" in provided:
            changes["deadline"] = ensure_not_past("deadline", edit.deadline, now)

        if "description" in provided:
            changes["description"] = edit.description

        target = EDIT_TARGETS.get(request.status, request.status)
        plan = self._plan(request, identity, RequestAction.EDIT, target)
        plan.changes.update(changes)

        recipient = changes.get("physician_id", request.physician_id)
        if "physician_id" in changes:
            title, message = "New evidence request", "An evidence request was assigned to you."
        else:
            title, message = "Request updated", "The attorney updated an evidence request."
        plan.effects.append(Notify(recipient_id=recipient, title=title, message=message, link=_case_link(request.case_id)))
        plan.effects.append(
            RecordAudit(
                action="edit_case_request",
                details={"fields": sorted(changes), "reopened": target != request.status},
            )
        )
        return plan

    # Cancellation negotiation

    def plan_propose_cancellation(
        self, request: CaseRequest, identity: Identity, *, reason: Optional[str] = None
    ) -> TransitionPlan:
        if request.cancel_requested_by == identity.user_id:
            raise CancellationPendingError("Cancellation already proposed; awaiting the other party")
        party = self.authorize(request, identity, RequestAction.PROPOSE_CANCELLATION)
        plan = self._plan(
            request, identity, RequestAction.PROPOSE_CANCELLATION, RequestStatus.CANCELLATION_REQUESTED
        )
        plan.changes["cancel_requested_by"] = identity.user_id
        plan.changes["status_before_cancel"] = request.status

        recipient = request.physician_id if party == Party.ATTORNEY else request.attorney_id
        message = f"The {party.value} proposed cancelling the request. Your confirmation is required."
        if reason:
            message = f"{message} Reason: {reason}"
        plan.effects.append(
            Notify(
                recipient_id=recipient,
                title="Cancellation proposed",
                message=message,
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(
            RecordAudit(
                action="propose_cancellation",
                details={"initiator": party.value, "previous_status": request.status.value},
            )
        )
        return plan

    def plan_confirm_cancellation(self, request: CaseRequest, identity: Identity) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.CONFIRM_CANCELLATION)
        plan = self._plan(request, identity, RequestAction.CONFIRM_CANCELLATION, None, deletes=True)
        plan.effects.append(PurgeRequestRecords())
        if request.cancel_requested_by is not None:
            plan.effects.append(
                Notify(
                    recipient_id=request.cancel_requested_by,
                    title="Cancellation confirmed",
                    message="The other party confirmed the cancellation. The request was removed.",
                    link=_case_link(request.case_id),
                )
            )
        plan.effects.append(SetCaseStatus(CaseStatus.OPEN))
        plan.effects.append(RecordAudit(action="confirm_cancellation", details={"case_id": str(request.case_id)}))
        return plan

    def plan_withdraw_cancellation(self, request: CaseRequest, identity: Identity) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.WITHDRAW_CANCELLATION)
        plan = self._plan_revert(request, identity, RequestAction.WITHDRAW_CANCELLATION)
        recipient = request.physician_id if identity.user_id == request.attorney_id else request.attorney_id
        plan.effects.append(
            Notify(
                recipient_id=recipient,
                title="Cancellation withdrawn",
                message="The cancellation proposal was withdrawn.",
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="withdraw_cancellation"))
        return plan

    def plan_reject_cancellation(self, request: CaseRequest, identity: Identity) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.REJECT_CANCELLATION)
        plan = self._plan_revert(request, identity, RequestAction.REJECT_CANCELLATION)
        if request.cancel_requested_by is not None:
            plan.effects.append(
                Notify(
                    recipient_id=request.cancel_requested_by,
                    title="Cancellation rejected",
                    message="The other party did not agree to cancel the request.",
                    link=_case_link(request.case_id),
                )
            )
        plan.effects.append(RecordAudit(action="reject_cancellation"))
        return plan

    # Reports

    def plan_deliver_report(
        self,
        request: CaseRequest,
        identity: Identity,
        *,
        title: str,
        content: Optional[str] = None,
    ) -> TransitionPlan:
        self.authorize(request, identity, RequestAction.DELIVER_REPORT)
        if not title or not title.strip():
            raise ValidationError("Report title is required", details={"field": "title"})
        plan = self._plan(request, identity, RequestAction.DELIVER_REPORT, RequestStatus.COMPLETED)
        plan.required.append(
            CreateReport(
                report_type=ReportType.FINAL_REPORT,
                status=ReportStatus.DELIVERED,
                title=title.strip(),
                content=content,
            )
        )
        plan.effects.append(CloseConsultation(ConsultationStatus.COMPLETED))
        plan.effects.append(SetCaseStatus(CaseStatus.COMPLETED))
        plan.effects.append(
            Notify(
                recipient_id=request.attorney_id,
                title="Report delivered",
                message=f"The final report '{title.strip()}' is available.",
                type="report",
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="deliver_report"))
        return plan

    def plan_submit_pre_report(
        self,
        request: CaseRequest,
        identity: Identity,
        *,
        title: str,
        content: Optional[str] = None,
    ) -> TransitionPlan:
        party = self.authorize(request, identity, RequestAction.SUBMIT_PRE_REPORT)
        if not title or not title.strip():
            raise ValidationError("Report title is required", details={"field": "title"})
        plan = self._plan(request, identity, RequestAction.SUBMIT_PRE_REPORT, request.status)
        plan.required.append(
            CreateReport(
                report_type=ReportType.PRE_REPORT,
                status=ReportStatus.DRAFT,
                title=title.strip(),
                content=content,
            )
        )
        plan.effects.append(
            Notify(
                recipient_id=request.attorney_id,
                title="Pre-report available",
                message=f"A pre-report '{title.strip()}' was added to the request.",
                type="report",
                link=_case_link(request.case_id),
            )
        )
        plan.effects.append(RecordAudit(action="submit_pre_report", details={"author": party.value}))
        return plan

    # Helpers

    def _plan(
        self,
        request: CaseRequest,
        identity: Identity,
        action: RequestAction,
        to_status: Optional[RequestStatus],
        *,
        deletes: bool = False,
    ) -> TransitionPlan:
        plan = TransitionPlan(
            action=action,
            actor_id=identity.user_id,
            from_status=request.status,
            to_status=to_status,
            deletes=deletes,
        )
        if to_status is not None and to_status != request.status:
            plan.changes["status"] = to_status
        return plan

    def _plan_revert(self, request: CaseRequest, identity: Identity, action: RequestAction) -> TransitionPlan:
        previous = request.status_before_cancel or RequestStatus.SCHEDULING
        plan = self._plan(request, identity, action, previous)
        plan.changes["cancel_requested_by"] = None
        plan.changes["status_before_cancel"] = None
        return plan


workflow_engine = RequestWorkflowEngine()
