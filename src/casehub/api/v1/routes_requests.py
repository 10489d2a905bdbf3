from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel

from src.casehub.api.v1.routes_cases import read_upload
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.document import DocumentCategory
from src.casehub.domain.models.profile import Identity
from src.casehub.domain.workflow.engine import RequestEdit
from src.casehub.domain.workflow.transitions import RequestAction, is_locked
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.documents.service import Upload
from src.casehub.services.workflow.service import (
    RequestCreationResult,
    TransitionResult,
    workflow_service,
)

router = APIRouter(
    prefix="/requests",
    tags=["requests"],
    dependencies=[Depends(get_api_key)],
)


class ActionRequest(BaseModel):
    # Status the client saw when it offered the action; stale views are
    # rejected with 409 instead of acting on a changed request.
    expected_status: Optional[RequestStatus] = None


class ReasonRequest(ActionRequest):
    reason: Optional[str] = None


class AcceptRequest(ActionRequest):
    scheduled_at: datetime
    report_forecast_date: datetime


class EditRequest(RequestEdit):
    expected_status: Optional[RequestStatus] = None


class AllowedActionsResponse(BaseModel):
    status: RequestStatus
    locked: bool
    actions: List[RequestAction]


async def _uploads(files: Optional[List[UploadFile]], category: DocumentCategory) -> List[Upload]:
    uploads = []
    for file in files or []:
        uploads.append(
            Upload(
                file_name=file.filename or category.value,
                content=await read_upload(file),
                category=category,
                content_type=file.content_type,
            )
        )
    return uploads


@router.post("/", response_model=RequestCreationResult, status_code=status.HTTP_201_CREATED)
async def create_request(
    case_id: UUID = Form(...),
    physician_id: UUID = Form(...),
    evidence_type: str = Form(...),
    deadline: Optional[datetime] = Form(None),
    description: Optional[str] = Form(None),
    specialist_id: Optional[UUID] = Form(None),
    identification: Optional[List[UploadFile]] = File(None),
    proof_of_address: Optional[List[UploadFile]] = File(None),
    prior_reports: Optional[List[UploadFile]] = File(None),
    exams: Optional[List[UploadFile]] = File(None),
    prescriptions: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(get_current_identity),
) -> RequestCreationResult:
    """Open an evidence request on a case, with its attachments.

    Attachments are sent as multipart fields named after their category.
    Identification and proof of address are mandatory.
    """

    attachments: List[Upload] = []
    attachments += await _uploads(identification, DocumentCategory.IDENTIFICATION)
    attachments += await _uploads(proof_of_address, DocumentCategory.PROOF_OF_ADDRESS)
    attachments += await _uploads(prior_reports, DocumentCategory.PRIOR_REPORTS)
    attachments += await _uploads(exams, DocumentCategory.EXAMS)
    attachments += await _uploads(prescriptions, DocumentCategory.PRESCRIPTIONS)

    return workflow_service.create_request(
        identity,
        case_id,
        physician_id=physician_id,
        evidence_type=evidence_type,
        attachments=attachments,
        deadline=deadline,
        description=description,
        specialist_id=specialist_id,
    )


@router.get("/", response_model=List[CaseRequest])
async def list_requests(
    case_id: Optional[UUID] = Query(None),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    identity: Identity = Depends(get_current_identity),
) -> List[CaseRequest]:
    return workflow_service.list_requests(identity, case_id=case_id, status=status_filter)


@router.get("/{request_id}", response_model=CaseRequest)
async def get_request(request_id: UUID, identity: Identity = Depends(get_current_identity)) -> CaseRequest:
    return workflow_service.get_request(identity, request_id)


@router.get("/{request_id}/allowed-actions", response_model=AllowedActionsResponse)
async def get_allowed_actions(
    request_id: UUID, identity: Identity = Depends(get_current_identity)
) -> AllowedActionsResponse:
    request = workflow_service.get_request(identity, request_id)
    return AllowedActionsResponse(
        status=request.status,
        locked=is_locked(request.status),
        actions=workflow_service.allowed_actions(identity, request_id),
    )


@router.post("/{request_id}/accept", response_model=TransitionResult)
async def accept_request(
    request_id: UUID, payload: AcceptRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.accept(
        identity,
        request_id,
        scheduled_at=payload.scheduled_at,
        report_forecast_date=payload.report_forecast_date,
        expected_status=payload.expected_status,
    )


@router.delete("/{request_id}", response_model=TransitionResult)
async def delete_request(
    request_id: UUID,
    expected_status: Optional[RequestStatus] = Query(None),
    identity: Identity = Depends(get_current_identity),
) -> TransitionResult:
    return workflow_service.delete(identity, request_id, expected_status=expected_status)


@router.patch("/{request_id}", response_model=TransitionResult)
async def edit_request(
    request_id: UUID, payload: EditRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    fields = payload.model_fields_set - {"expected_status"}
    edit = RequestEdit(**payload.model_dump(include=fields))
    return workflow_service.edit(identity, request_id, edit, expected_status=payload.expected_status)


@router.post("/{request_id}/request-adjustment", response_model=TransitionResult)
async def request_adjustment(
    request_id: UUID, payload: ReasonRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.request_adjustment(
        identity, request_id, reason=payload.reason, expected_status=payload.expected_status
    )


@router.post("/{request_id}/allow-edit", response_model=TransitionResult)
async def allow_edit(
    request_id: UUID, payload: ActionRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.allow_edit(identity, request_id, expected_status=payload.expected_status)


@router.post("/{request_id}/deny-adjustment", response_model=TransitionResult)
async def deny_adjustment(
    request_id: UUID, payload: ReasonRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.deny_adjustment(
        identity, request_id, reason=payload.reason, expected_status=payload.expected_status
    )


@router.post("/{request_id}/propose-cancellation", response_model=TransitionResult)
async def propose_cancellation(
    request_id: UUID, payload: ReasonRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.propose_cancellation(
        identity, request_id, reason=payload.reason, expected_status=payload.expected_status
    )


@router.post("/{request_id}/confirm-cancellation", response_model=TransitionResult)
async def confirm_cancellation(
    request_id: UUID, payload: ActionRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.confirm_cancellation(identity, request_id, expected_status=payload.expected_status)


@router.post("/{request_id}/withdraw-cancellation", response_model=TransitionResult)
async def withdraw_cancellation(
    request_id: UUID, payload: ActionRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.withdraw_cancellation(identity, request_id, expected_status=payload.expected_status)


@router.post("/{request_id}/reject-cancellation", response_model=TransitionResult)
async def reject_cancellation(
    request_id: UUID, payload: ActionRequest, identity: Identity = Depends(get_current_identity)
) -> TransitionResult:
    return workflow_service.reject_cancellation(identity, request_id, expected_status=payload.expected_status)


@router.post("/{request_id}/deliver-report", response_model=TransitionResult)
async def deliver_report(
    request_id: UUID,
    title: str = Form(...),
    content: Optional[str] = Form(None),
    expected_status: Optional[RequestStatus] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_current_identity),
) -> TransitionResult:
    upload = None
    if file is not None:
        upload = Upload(
            file_name=file.filename or "report",
            content=await read_upload(file),
            content_type=file.content_type,
        )
    return workflow_service.deliver_report(
        identity,
        request_id,
        title=title,
        content=content,
        file=upload,
        expected_status=expected_status,
    )


@router.post("/{request_id}/pre-report", response_model=TransitionResult)
async def submit_pre_report(
    request_id: UUID,
    title: str = Form(...),
    content: Optional[str] = Form(None),
    expected_status: Optional[RequestStatus] = Form(None),
    file: Optional[UploadFile] = File(None),
    identity: Identity = Depends(get_current_identity),
) -> TransitionResult:
    upload = None
    if file is not None:
        upload = Upload(
            file_name=file.filename or "pre-report",
            content=await read_upload(file),
            content_type=file.content_type,
        )
    return workflow_service.submit_pre_report(
        identity,
        request_id,
        title=title,
        content=content,
        file=upload,
        expected_status=expected_status,
    )
