from datetime import datetime, timedelta, timezone

import pytest

from src.casehub.config import settings
from src.casehub.domain.models.case import CaseStatus
from src.casehub.domain.models.case_request import RequestStatus
from src.casehub.domain.models.consultation import ConsultationStatus
from src.casehub.domain.models.document import DocumentCategory
from src.casehub.domain.models.report import ReportStatus, ReportType
from src.casehub.domain.workflow.engine import RequestEdit
from src.casehub.domain.workflow.transitions import RequestAction
from src.casehub.errors import (
    AuthorizationError,
    CancellationPendingError,
    ConcurrentUpdateError,
    InvalidTransitionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from src.casehub.infra.db.inmemory import repositories
from src.casehub.infra.storage.blobs import blob_storage_backend
from src.casehub.services.audit.service import audit_service
from src.casehub.services.cases.service import case_service
from src.casehub.services.documents.service import Upload
from src.casehub.services.notifications.service import notification_service
from src.casehub.services.workflow.service import workflow_service


def in_days(days: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def mandatory_uploads():
    return [
        Upload(file_name="rg.pdf", content=b"%PDF-id", category=DocumentCategory.IDENTIFICATION),
        Upload(file_name="bill.pdf", content=b"%PDF-addr", category=DocumentCategory.PROOF_OF_ADDRESS),
    ]


def open_request(attorney, case, physician, **kwargs):
    kwargs.setdefault("attachments", mandatory_uploads())
    result = workflow_service.create_request(
        attorney,
        case.id,
        physician_id=physician.user_id,
        evidence_type="medical_report",
        **kwargs,
    )
    return result.request


def accepted_request(attorney, case, physician):
    request = open_request(attorney, case, physician)
    workflow_service.accept(
        physician,
        request.id,
        scheduled_at=in_days(1),
        report_forecast_date=in_days(10),
    )
    return repositories.requests.get(request.id)


def test_create_request_round_trip(attorney, case, physician):
    deadline = in_days(30)
    result = workflow_service.create_request(
        attorney,
        case.id,
        physician_id=physician.user_id,
        evidence_type="medical_report",
        attachments=mandatory_uploads(),
        deadline=deadline,
        description="Assess work capacity",
    )

    stored = workflow_service.get_request(attorney, result.request.id)
    assert stored.status == RequestStatus.PENDING
    assert stored.physician_id == physician.user_id
    assert stored.deadline == deadline
    assert stored.description == "Assess work capacity"
    assert result.failed_uploads == []
    assert {d.category for d in result.documents} == {
        DocumentCategory.IDENTIFICATION,
        DocumentCategory.PROOF_OF_ADDRESS,
    }
    assert case_service.get_case(attorney, case.id).status == CaseStatus.IN_PROGRESS

    inbox = notification_service.list_for_user(physician.user_id)
    assert [n.title for n in inbox] == ["New evidence request"]
    assert audit_service.list_events(resource_type="case_request", resource_id=str(stored.id))


def test_create_request_without_mandatory_attachments_writes_nothing(attorney, case, physician):
    with pytest.raises(ValidationError) as exc:
        open_request(
            attorney,
            case,
            physician,
            attachments=[Upload(file_name="rg.pdf", content=b"id", category=DocumentCategory.IDENTIFICATION)],
        )
    assert exc.value.details["missing_categories"] == ["proof_of_address"]
    assert workflow_service.list_requests(attorney, case_id=case.id) == []


def test_create_request_reports_failed_uploads(attorney, case, physician, monkeypatch):
    save_file = blob_storage_backend.save_file

    def flaky_save(bucket, path, content, **kwargs):
        if "/exams_" in path:
            raise StoreError("Data store operation failed")
        return save_file(bucket, path, content, **kwargs)

    monkeypatch.setattr(blob_storage_backend, "save_file", flaky_save)
    attachments = mandatory_uploads() + [
        Upload(file_name="exam.pdf", content=b"%PDF-exam", category=DocumentCategory.EXAMS),
    ]
    result = workflow_service.create_request(
        attorney,
        case.id,
        physician_id=physician.user_id,
        evidence_type="medical_report",
        attachments=attachments,
    )

    # The request stands; the broken file is reported back.
    assert result.request.status == RequestStatus.PENDING
    assert len(result.documents) == 2
    assert [(f.file_name, f.category) for f in result.failed_uploads] == [("exam.pdf", DocumentCategory.EXAMS)]
    assert any("exam.pdf" in w for w in result.warnings)


def test_empty_mandatory_attachment_rejects_request(attorney, case, physician):
    attachments = [
        Upload(file_name="rg.pdf", content=b"", category=DocumentCategory.IDENTIFICATION),
        Upload(file_name="bill.pdf", content=b"%PDF-addr", category=DocumentCategory.PROOF_OF_ADDRESS),
    ]
    with pytest.raises(ValidationError) as exc:
        open_request(attorney, case, physician, attachments=attachments)

    assert exc.value.details["missing_categories"] == ["identification"]
    assert workflow_service.list_requests(attorney, case_id=case.id) == []
    assert repositories.documents.list_by_case(case.id) == []


def test_invalid_optional_attachment_rejects_request(attorney, case, physician, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 16)
    attachments = mandatory_uploads() + [
        Upload(file_name="scan.pdf", content=b"x" * 17, category=DocumentCategory.EXAMS),
    ]
    with pytest.raises(ValidationError) as exc:
        open_request(attorney, case, physician, attachments=attachments)

    assert [f["file_name"] for f in exc.value.details["invalid_files"]] == ["scan.pdf"]
    assert workflow_service.list_requests(attorney, case_id=case.id) == []
    assert repositories.documents.list_by_case(case.id) == []


def test_only_one_active_request_per_case(attorney, case, physician, other_physician):
    open_request(attorney, case, physician)
    with pytest.raises(InvalidTransitionError):
        open_request(attorney, case, other_physician)


def test_new_request_allowed_after_completion(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    workflow_service.deliver_report(physician, request.id, title="Final report")
    second = open_request(attorney, case, physician)
    assert second.status == RequestStatus.PENDING


def test_past_deadline_rejected_and_prior_value_kept(attorney, case, physician):
    deadline = in_days(15)
    request = open_request(attorney, case, physician, deadline=deadline)

    with pytest.raises(ValidationError):
        workflow_service.edit(attorney, request.id, RequestEdit(deadline=in_days(-1)))

    assert repositories.requests.get(request.id).deadline == deadline


def test_accept_creates_exactly_one_consultation_with_forecast(attorney, case, physician):
    request = open_request(attorney, case, physician)
    scheduled_at = in_days(2)
    forecast = in_days(20)

    result = workflow_service.accept(
        physician, request.id, scheduled_at=scheduled_at, report_forecast_date=forecast
    )

    assert result.request.status == RequestStatus.SCHEDULING
    assert result.request.report_forecast_date == forecast
    consultation = repositories.consultations.get_by_request(request.id)
    assert consultation is not None
    assert consultation.scheduled_at == scheduled_at
    assert consultation.status == ConsultationStatus.SCHEDULED
    assert consultation.patient_name == case.patient_name
    assert case_service.get_case(attorney, case.id).status == CaseStatus.AWAITING_REPORT


def test_reacceptance_reuses_the_consultation(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    first = repositories.consultations.get_by_request(request.id)

    workflow_service.request_adjustment(attorney, request.id, reason="wrong exam type")
    workflow_service.allow_edit(physician, request.id)
    edited = workflow_service.edit(attorney, request.id, RequestEdit(evidence_type="expert_opinion"))
    assert edited.request.status == RequestStatus.PENDING

    new_date = in_days(5)
    workflow_service.accept(physician, request.id, scheduled_at=new_date, report_forecast_date=in_days(12))

    consultations = repositories.consultations.list_by_physician(physician.user_id)
    assert len(consultations) == 1
    assert consultations[0].id == first.id
    assert consultations[0].scheduled_at == new_date


def test_physician_immutable_once_scheduled(attorney, case, physician, other_physician):
    request = accepted_request(attorney, case, physician)
    with pytest.raises(InvalidTransitionError):
        workflow_service.edit(attorney, request.id, RequestEdit(physician_id=other_physician.user_id))
    assert repositories.requests.get(request.id).physician_id == physician.user_id


def test_physician_can_be_replaced_while_pending(attorney, case, physician, other_physician):
    request = open_request(attorney, case, physician)
    result = workflow_service.edit(attorney, request.id, RequestEdit(physician_id=other_physician.user_id))
    assert result.request.physician_id == other_physician.user_id
    assert notification_service.list_for_user(other_physician.user_id)[0].title == "New evidence request"
    with pytest.raises(AuthorizationError):
        workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(2))


def test_delete_pending_request(attorney, case, physician):
    request = open_request(attorney, case, physician)
    result = workflow_service.delete(attorney, request.id)
    assert result.deleted
    assert repositories.requests.get(request.id) is None
    assert case_service.get_case(attorney, case.id).status == CaseStatus.OPEN


def test_delete_rejected_after_acceptance(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    with pytest.raises(InvalidTransitionError):
        workflow_service.delete(attorney, request.id)


def test_mutual_cancellation(attorney, case, physician):
    request = accepted_request(attorney, case, physician)

    proposed = workflow_service.propose_cancellation(attorney, request.id, reason="settled")
    assert proposed.request.status == RequestStatus.CANCELLATION_REQUESTED
    assert proposed.request.cancel_requested_by == attorney.user_id

    with pytest.raises(CancellationPendingError):
        workflow_service.confirm_cancellation(attorney, request.id)
    assert repositories.requests.get(request.id).status == RequestStatus.CANCELLATION_REQUESTED

    confirmed = workflow_service.confirm_cancellation(physician, request.id)
    assert confirmed.deleted
    assert repositories.requests.get(request.id) is None
    assert repositories.consultations.get_by_request(request.id) is None
    assert case_service.get_case(attorney, case.id).status == CaseStatus.OPEN
    titles = [n.title for n in notification_service.list_for_user(attorney.user_id)]
    assert "Cancellation confirmed" in titles


def test_rejected_cancellation_restores_previous_status(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    workflow_service.propose_cancellation(physician, request.id)

    result = workflow_service.reject_cancellation(attorney, request.id)

    assert result.request.status == RequestStatus.SCHEDULING
    assert result.request.cancel_requested_by is None
    assert result.request.status_before_cancel is None


def test_withdrawn_cancellation_restores_previous_status(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    workflow_service.request_adjustment(attorney, request.id)
    workflow_service.propose_cancellation(attorney, request.id)

    result = workflow_service.withdraw_cancellation(attorney, request.id)

    assert result.request.status == RequestStatus.ADJUSTMENT_REQUESTED
    assert result.request.cancel_requested_by is None


def test_deny_adjustment_keeps_schedule(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    workflow_service.request_adjustment(attorney, request.id)
    result = workflow_service.deny_adjustment(physician, request.id, reason="exam already booked")
    assert result.request.status == RequestStatus.SCHEDULING


def test_deliver_report_with_file(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    upload = Upload(file_name="laudo.pdf", content=b"%PDF-report", content_type="application/pdf")

    result = workflow_service.deliver_report(
        physician, request.id, title="Final report", content="Fit for work", file=upload
    )

    assert result.request.status == RequestStatus.COMPLETED
    assert result.report.type == ReportType.FINAL_REPORT
    assert result.report.status == ReportStatus.DELIVERED
    assert result.report.file_path.startswith(f"{request.id}/final_report_")
    assert repositories.consultations.get_by_request(request.id).status == ConsultationStatus.COMPLETED
    assert case_service.get_case(attorney, case.id).status == CaseStatus.COMPLETED
    with pytest.raises(InvalidTransitionError):
        workflow_service.request_adjustment(attorney, request.id)


def test_specialist_pre_report(attorney, case, physician, specialist):
    request = open_request(attorney, case, physician, specialist_id=specialist.user_id)
    workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(9))

    result = workflow_service.submit_pre_report(specialist, request.id, title="Orthopedic findings")

    assert result.request.status == RequestStatus.SCHEDULING
    assert result.report.type == ReportType.PRE_REPORT
    assert result.report.author_id == specialist.user_id
    assert workflow_service.allowed_actions(specialist, request.id) == [RequestAction.SUBMIT_PRE_REPORT]


def test_stale_expected_status_is_rejected(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    with pytest.raises(ConcurrentUpdateError):
        workflow_service.request_adjustment(attorney, request.id, expected_status=RequestStatus.PENDING)
    assert repositories.requests.get(request.id).status == RequestStatus.SCHEDULING


def test_conditional_update_lets_only_one_writer_win(attorney, case, physician):
    request = open_request(attorney, case, physician)

    first = repositories.requests.update_if_status(
        request.id, RequestStatus.PENDING, {"status": RequestStatus.SCHEDULING}
    )
    second = repositories.requests.update_if_status(
        request.id, RequestStatus.PENDING, {"status": RequestStatus.SCHEDULING}
    )

    assert first is not None and first.status == RequestStatus.SCHEDULING
    assert second is None
    assert repositories.requests.delete_if_status(request.id, RequestStatus.PENDING) is False


def test_lost_race_surfaces_concurrent_update(attorney, case, physician, monkeypatch):
    request = open_request(attorney, case, physician)
    stale = repositories.requests.get(request.id)
    # Another actor accepts between our read and our write.
    workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(3))
    monkeypatch.setattr(repositories.requests, "get", lambda _id: stale)

    with pytest.raises(ConcurrentUpdateError):
        workflow_service.delete(attorney, request.id)


def test_accept_planned_before_reassignment_is_rejected(attorney, case, physician, other_physician, monkeypatch):
    request = open_request(attorney, case, physician)
    stale = repositories.requests.get(request.id)
    # The attorney hands the request to another physician; the status stays pending.
    workflow_service.edit(attorney, request.id, RequestEdit(physician_id=other_physician.user_id))
    monkeypatch.setattr(repositories.requests, "get", lambda _id: stale)

    with pytest.raises(ConcurrentUpdateError):
        workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(3))

    monkeypatch.undo()
    current = repositories.requests.get(request.id)
    assert current.status == RequestStatus.PENDING
    assert current.physician_id == other_physician.user_id
    assert repositories.consultations.get_by_request(request.id) is None


def test_cancellation_confirmed_against_older_read_is_rejected(attorney, case, physician, monkeypatch):
    request = accepted_request(attorney, case, physician)
    workflow_service.propose_cancellation(physician, request.id, reason="conflict of interest")
    stale = repositories.requests.get(request.id)
    # Edits are allowed while cancellation is pending and keep the status.
    workflow_service.edit(attorney, request.id, RequestEdit(description="Updated scope"))
    monkeypatch.setattr(repositories.requests, "get", lambda _id: stale)

    with pytest.raises(ConcurrentUpdateError):
        workflow_service.confirm_cancellation(attorney, request.id)

    monkeypatch.undo()
    assert repositories.requests.get(request.id).status == RequestStatus.CANCELLATION_REQUESTED


def test_every_write_bumps_the_version(attorney, case, physician):
    request = open_request(attorney, case, physician)
    assert request.version == 1
    workflow_service.edit(attorney, request.id, RequestEdit(description="More detail"))
    assert repositories.requests.get(request.id).version == 2


def test_failed_consultation_write_reverts_status(attorney, case, physician, monkeypatch):
    request = open_request(attorney, case, physician)

    def broken_save(consultation):
        raise StoreError("Data store operation failed")

    monkeypatch.setattr(repositories.consultations, "save", broken_save)

    with pytest.raises(StoreError):
        workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(3))

    reverted = repositories.requests.get(request.id)
    assert reverted.status == RequestStatus.PENDING
    assert reverted.report_forecast_date is None


def test_failed_notification_is_reported_as_warning(attorney, case, physician, monkeypatch):
    request = open_request(attorney, case, physician)

    def broken_notify(*args, **kwargs):
        raise StoreError("Data store operation failed")

    monkeypatch.setattr(notification_service, "notify_user", broken_notify)

    result = workflow_service.accept(
        physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(3)
    )
    assert result.request.status == RequestStatus.SCHEDULING
    assert result.warnings == ["Notify failed"]


def test_unexpected_effect_error_still_returns_the_transition(attorney, case, physician, monkeypatch):
    request = open_request(attorney, case, physician)

    def broken_notify(*args, **kwargs):
        raise ValueError("bad notification payload")

    monkeypatch.setattr(notification_service, "notify_user", broken_notify)

    result = workflow_service.accept(
        physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(3)
    )
    assert result.request.status == RequestStatus.SCHEDULING
    assert result.warnings == ["Notify failed"]
    # Effects after the failed one still ran.
    assert case_service.get_case(attorney, case.id).status == CaseStatus.AWAITING_REPORT
    events = audit_service.list_events(resource_type="case_request", resource_id=str(request.id))
    assert "accept_case_request" in [e.action for e in events]


def test_scenario_accept_adjust_edit_reaccept_deliver(attorney, case, physician):
    request = open_request(attorney, case, physician)
    workflow_service.accept(physician, request.id, scheduled_at=in_days(1), report_forecast_date=in_days(10))
    workflow_service.request_adjustment(attorney, request.id, reason="add exams")
    workflow_service.allow_edit(physician, request.id)
    workflow_service.edit(attorney, request.id, RequestEdit(description="Include spine X-ray"))
    assert repositories.requests.get(request.id).status == RequestStatus.PENDING
    workflow_service.accept(physician, request.id, scheduled_at=in_days(2), report_forecast_date=in_days(11))
    result = workflow_service.deliver_report(physician, request.id, title="Final report")

    assert result.request.status == RequestStatus.COMPLETED
    assert result.request.description == "Include spine X-ray"
    assert len(repositories.reports.list_by_request(request.id)) == 1
    timeline = case_service.timeline(attorney, case.id)
    assert {e["type"] for e in timeline} >= {"case_created", "request_created", "report_submitted"}


def test_scenario_physician_cancels_attorney_confirms(attorney, case, physician):
    request = accepted_request(attorney, case, physician)
    workflow_service.propose_cancellation(physician, request.id, reason="conflict of interest")
    assert workflow_service.allowed_actions(attorney, request.id) == [
        RequestAction.EDIT,
        RequestAction.CONFIRM_CANCELLATION,
        RequestAction.REJECT_CANCELLATION,
    ]
    workflow_service.confirm_cancellation(attorney, request.id)

    replacement = open_request(attorney, case, physician)
    assert replacement.status == RequestStatus.PENDING


def test_unrelated_users_cannot_see_requests(attorney, case, physician, other_attorney):
    request = open_request(attorney, case, physician)
    with pytest.raises(NotFoundError):
        workflow_service.get_request(other_attorney, request.id)
    assert workflow_service.list_requests(other_attorney) == []
