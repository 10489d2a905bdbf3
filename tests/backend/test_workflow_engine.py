from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from src.casehub.domain.models.case import Case, CaseStatus
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.document import DocumentCategory
from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.domain.workflow.engine import (
    CreateReport,
    Notify,
    RequestEdit,
    ScheduleConsultation,
    SetCaseStatus,
    ensure_not_past,
    workflow_engine,
)
from src.casehub.domain.workflow.transitions import (
    RequestAction,
    allowed_actions,
    can_perform,
    is_locked,
)
from src.casehub.errors import (
    AuthorizationError,
    CancellationPendingError,
    InvalidTransitionError,
    ValidationError,
)

NOW = datetime(2026, 3, 10, 14, 30, 45, tzinfo=timezone.utc)

ATTORNEY = Identity(user_id=uuid4(), role=UserRole.ATTORNEY)
PHYSICIAN = Identity(user_id=uuid4(), role=UserRole.GENERAL_PHYSICIAN)
SPECIALIST = Identity(user_id=uuid4(), role=UserRole.SPECIALIST)
STRANGER = Identity(user_id=uuid4(), role=UserRole.GENERAL_PHYSICIAN)


def make_request(status: RequestStatus = RequestStatus.PENDING, **overrides) -> CaseRequest:
    fields = dict(
        id=uuid4(),
        case_id=uuid4(),
        attorney_id=ATTORNEY.user_id,
        physician_id=PHYSICIAN.user_id,
        specialist_id=SPECIALIST.user_id,
        evidence_type="medical_report",
        status=status,
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return CaseRequest(**fields)


def make_case(**overrides) -> Case:
    fields = dict(
        id=uuid4(),
        attorney_id=ATTORNEY.user_id,
        title="Disability claim",
        patient_name="Maria Souza",
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return Case(**fields)


def test_lock_predicate_matches_unlocked_statuses():
    unlocked = {RequestStatus.PENDING, RequestStatus.ADJUSTING, RequestStatus.CANCELLATION_REQUESTED}
    for status in RequestStatus:
        assert is_locked(status) is (status not in unlocked)


def test_can_perform_is_role_and_status_based():
    assert can_perform(UserRole.ATTORNEY, RequestAction.CREATE, None)
    assert not can_perform(UserRole.GENERAL_PHYSICIAN, RequestAction.CREATE, None)
    assert can_perform(UserRole.GENERAL_PHYSICIAN, RequestAction.ACCEPT, RequestStatus.PENDING)
    assert not can_perform(UserRole.ATTORNEY, RequestAction.ACCEPT, RequestStatus.PENDING)
    assert not can_perform(UserRole.GENERAL_PHYSICIAN, RequestAction.ACCEPT, RequestStatus.SCHEDULING)
    assert can_perform(UserRole.SPECIALIST, RequestAction.SUBMIT_PRE_REPORT, RequestStatus.SCHEDULING)
    assert not can_perform(UserRole.SPECIALIST, RequestAction.DELIVER_REPORT, RequestStatus.SCHEDULING)
    for status in RequestStatus:
        assert can_perform(UserRole.ATTORNEY, RequestAction.EDIT, status) is not is_locked(status)


def test_allowed_actions_per_party():
    pending = make_request()
    assert set(allowed_actions(pending, ATTORNEY)) == {RequestAction.DELETE, RequestAction.EDIT}
    assert allowed_actions(pending, PHYSICIAN) == [RequestAction.ACCEPT]
    assert allowed_actions(pending, STRANGER) == []

    scheduling = make_request(RequestStatus.SCHEDULING)
    assert set(allowed_actions(scheduling, PHYSICIAN)) == {
        RequestAction.PROPOSE_CANCELLATION,
        RequestAction.DELIVER_REPORT,
        RequestAction.SUBMIT_PRE_REPORT,
    }
    assert allowed_actions(scheduling, SPECIALIST) == [RequestAction.SUBMIT_PRE_REPORT]


def test_allowed_actions_split_cancellation_sides():
    request = make_request(
        RequestStatus.CANCELLATION_REQUESTED,
        cancel_requested_by=ATTORNEY.user_id,
        status_before_cancel=RequestStatus.SCHEDULING,
    )
    initiator = set(allowed_actions(request, ATTORNEY))
    counterparty = set(allowed_actions(request, PHYSICIAN))
    assert RequestAction.WITHDRAW_CANCELLATION in initiator
    assert RequestAction.CONFIRM_CANCELLATION not in initiator
    assert counterparty == {RequestAction.CONFIRM_CANCELLATION, RequestAction.REJECT_CANCELLATION}


def test_ensure_not_past_uses_minute_granularity():
    same_minute = NOW.replace(second=0)
    assert ensure_not_past("deadline", same_minute, NOW) == same_minute
    with pytest.raises(ValidationError):
        ensure_not_past("deadline", same_minute - timedelta(seconds=1), NOW)
    # Naive values are read as UTC.
    naive = (NOW + timedelta(hours=1)).replace(tzinfo=None)
    assert ensure_not_past("deadline", naive, NOW).tzinfo == timezone.utc


def test_plan_create_requires_mandatory_attachments():
    with pytest.raises(ValidationError) as exc:
        workflow_engine.plan_create(
            ATTORNEY,
            make_case(),
            physician_id=PHYSICIAN.user_id,
            physician_role=UserRole.GENERAL_PHYSICIAN,
            evidence_type="medical_report",
            attachment_categories=[DocumentCategory.IDENTIFICATION, DocumentCategory.EXAMS],
            has_active_request=False,
            now=NOW,
        )
    assert exc.value.details["missing_categories"] == ["proof_of_address"]


def test_plan_create_rejects_active_request_and_foreign_case():
    kwargs = dict(
        physician_id=PHYSICIAN.user_id,
        physician_role=UserRole.GENERAL_PHYSICIAN,
        evidence_type="medical_report",
        attachment_categories=[DocumentCategory.IDENTIFICATION, DocumentCategory.PROOF_OF_ADDRESS],
        now=NOW,
    )
    with pytest.raises(InvalidTransitionError):
        workflow_engine.plan_create(ATTORNEY, make_case(), has_active_request=True, **kwargs)
    with pytest.raises(AuthorizationError):
        workflow_engine.plan_create(
            ATTORNEY, make_case(attorney_id=uuid4()), has_active_request=False, **kwargs
        )


def test_plan_create_rejects_non_physician_assignee():
    with pytest.raises(ValidationError):
        workflow_engine.plan_create(
            ATTORNEY,
            make_case(),
            physician_id=SPECIALIST.user_id,
            physician_role=UserRole.SPECIALIST,
            evidence_type="medical_report",
            attachment_categories=[DocumentCategory.IDENTIFICATION, DocumentCategory.PROOF_OF_ADDRESS],
            has_active_request=False,
            now=NOW,
        )


def test_plan_create_moves_open_case_in_progress():
    plan = workflow_engine.plan_create(
        ATTORNEY,
        make_case(),
        physician_id=PHYSICIAN.user_id,
        physician_role=UserRole.GENERAL_PHYSICIAN,
        evidence_type=" medical_report ",
        attachment_categories=[DocumentCategory.IDENTIFICATION, DocumentCategory.PROOF_OF_ADDRESS],
        has_active_request=False,
        now=NOW,
        deadline=NOW + timedelta(days=5),
    )
    assert plan.to_status == RequestStatus.PENDING
    assert plan.changes["evidence_type"] == "medical_report"
    assert SetCaseStatus(CaseStatus.IN_PROGRESS) in plan.effects
    assert any(isinstance(e, Notify) and e.recipient_id == PHYSICIAN.user_id for e in plan.effects)


def test_plan_accept_requires_consultation_and_future_dates():
    request = make_request()
    plan = workflow_engine.plan_accept(
        request,
        PHYSICIAN,
        scheduled_at=NOW + timedelta(days=1),
        report_forecast_date=NOW + timedelta(days=7),
        now=NOW,
    )
    assert plan.changes["status"] == RequestStatus.SCHEDULING
    assert plan.changes["report_forecast_date"] == NOW + timedelta(days=7)
    assert plan.required == [ScheduleConsultation(scheduled_at=NOW + timedelta(days=1))]

    with pytest.raises(ValidationError):
        workflow_engine.plan_accept(
            request,
            PHYSICIAN,
            scheduled_at=NOW + timedelta(days=1),
            report_forecast_date=NOW - timedelta(days=1),
            now=NOW,
        )


def test_only_assigned_physician_can_accept():
    request = make_request()
    with pytest.raises(AuthorizationError):
        workflow_engine.plan_accept(
            request, STRANGER, scheduled_at=NOW, report_forecast_date=NOW, now=NOW
        )
    with pytest.raises(AuthorizationError):
        workflow_engine.plan_accept(
            request, ATTORNEY, scheduled_at=NOW, report_forecast_date=NOW, now=NOW
        )


def test_edit_is_rejected_while_locked():
    for status in (RequestStatus.SCHEDULING, RequestStatus.ADJUSTMENT_REQUESTED, RequestStatus.COMPLETED):
        with pytest.raises(InvalidTransitionError) as exc:
            workflow_engine.plan_edit(
                make_request(status), ATTORNEY, RequestEdit(description="new"), now=NOW
            )
        assert exc.value.message == "Request is locked for editing"


def test_edit_from_adjusting_returns_to_pending():
    plan = workflow_engine.plan_edit(
        make_request(RequestStatus.ADJUSTING),
        ATTORNEY,
        RequestEdit(evidence_type="expert_opinion"),
        now=NOW,
    )
    assert plan.to_status == RequestStatus.PENDING
    assert plan.changes == {"status": RequestStatus.PENDING, "evidence_type": "expert_opinion"}


def test_physician_change_only_in_pending_or_adjusting():
    new_physician = uuid4()
    plan = workflow_engine.plan_edit(
        make_request(),
        ATTORNEY,
        RequestEdit(physician_id=new_physician),
        now=NOW,
        physician_role=UserRole.GENERAL_PHYSICIAN,
    )
    assert plan.changes["physician_id"] == new_physician

    with pytest.raises(InvalidTransitionError):
        workflow_engine.plan_edit(
            make_request(
                RequestStatus.CANCELLATION_REQUESTED,
                cancel_requested_by=ATTORNEY.user_id,
                status_before_cancel=RequestStatus.SCHEDULING,
            ),
            ATTORNEY,
            RequestEdit(physician_id=new_physician),
            now=NOW,
            physician_role=UserRole.GENERAL_PHYSICIAN,
        )


def test_edit_applies_only_fields_that_were_sent():
    plan = workflow_engine.plan_edit(make_request(), ATTORNEY, RequestEdit(description=None), now=NOW)
    assert plan.changes == {"description": None}


def test_propose_cancellation_records_initiator_and_previous_status():
    request = make_request(RequestStatus.ADJUSTMENT_REQUESTED)
    plan = workflow_engine.plan_propose_cancellation(request, PHYSICIAN, reason="patient moved")
    assert plan.changes == {
        "status": RequestStatus.CANCELLATION_REQUESTED,
        "cancel_requested_by": PHYSICIAN.user_id,
        "status_before_cancel": RequestStatus.ADJUSTMENT_REQUESTED,
    }
    notify = next(e for e in plan.effects if isinstance(e, Notify))
    assert notify.recipient_id == ATTORNEY.user_id
    assert "patient moved" in notify.message


def test_initiator_cannot_confirm_own_cancellation():
    request = make_request(
        RequestStatus.CANCELLATION_REQUESTED,
        cancel_requested_by=ATTORNEY.user_id,
        status_before_cancel=RequestStatus.SCHEDULING,
    )
    with pytest.raises(CancellationPendingError):
        workflow_engine.plan_confirm_cancellation(request, ATTORNEY)
    with pytest.raises(CancellationPendingError):
        workflow_engine.plan_propose_cancellation(request, ATTORNEY)

    plan = workflow_engine.plan_confirm_cancellation(request, PHYSICIAN)
    assert plan.deletes and plan.to_status is None


def test_withdraw_and_reject_restore_previous_status():
    request = make_request(
        RequestStatus.CANCELLATION_REQUESTED,
        cancel_requested_by=PHYSICIAN.user_id,
        status_before_cancel=RequestStatus.ADJUSTING,
    )
    withdrawn = workflow_engine.plan_withdraw_cancellation(request, PHYSICIAN)
    rejected = workflow_engine.plan_reject_cancellation(request, ATTORNEY)
    for plan in (withdrawn, rejected):
        assert plan.changes == {
            "status": RequestStatus.ADJUSTING,
            "cancel_requested_by": None,
            "status_before_cancel": None,
        }
    with pytest.raises(AuthorizationError):
        workflow_engine.plan_withdraw_cancellation(request, ATTORNEY)


def test_deliver_report_completes_request():
    plan = workflow_engine.plan_deliver_report(
        make_request(RequestStatus.ADJUSTMENT_REQUESTED), PHYSICIAN, title="Final report"
    )
    assert plan.to_status == RequestStatus.COMPLETED
    assert isinstance(plan.required[0], CreateReport)
    assert SetCaseStatus(CaseStatus.COMPLETED) in plan.effects
    with pytest.raises(AuthorizationError):
        workflow_engine.plan_deliver_report(make_request(RequestStatus.SCHEDULING), SPECIALIST, title="x")


def test_specialist_pre_report_keeps_status():
    plan = workflow_engine.plan_submit_pre_report(
        make_request(RequestStatus.SCHEDULING), SPECIALIST, title="Preliminary findings"
    )
    assert plan.to_status == RequestStatus.SCHEDULING
    assert "status" not in plan.changes


def test_adjustment_can_only_be_requested_while_scheduling():
    assert can_perform(UserRole.ATTORNEY, RequestAction.REQUEST_ADJUSTMENT, RequestStatus.SCHEDULING)
    for status in (
        RequestStatus.PENDING,
        RequestStatus.ADJUSTING,
        RequestStatus.ADJUSTMENT_REQUESTED,
        RequestStatus.CANCELLATION_REQUESTED,
        RequestStatus.COMPLETED,
    ):
        assert not can_perform(UserRole.ATTORNEY, RequestAction.REQUEST_ADJUSTMENT, status)
