from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel

from src.casehub.config import settings
from src.casehub.domain.models.case import Case, CasePriority
from src.casehub.domain.models.case_message import CaseMessage
from src.casehub.domain.models.document import Document, DocumentCategory
from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.cases.service import case_service
from src.casehub.services.documents.service import Upload, document_service
from src.casehub.services.messages.service import message_service

router = APIRouter(
    prefix="/cases",
    tags=["cases"],
    dependencies=[Depends(get_api_key)],
)


class CaseCreateRequest(BaseModel):
    title: str
    patient_name: str
    patient_cpf: Optional[str] = None
    process_number: Optional[str] = None
    description: Optional[str] = None
    priority: CasePriority = CasePriority.NORMAL
    deadline: Optional[datetime] = None


class TimelineEvent(BaseModel):
    type: str
    title: str
    description: Optional[str] = None
    timestamp: datetime


class MessageCreateRequest(BaseModel):
    content: str


async def read_upload(file: UploadFile) -> bytes:
    """Read an uploaded file, enforcing the configured size limit."""

    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="Uploaded file is too large.",
        )
    return content


@router.post("/", response_model=Case, status_code=status.HTTP_201_CREATED)
async def create_case(payload: CaseCreateRequest, identity: Identity = Depends(get_current_identity)) -> Case:
    return case_service.create_case(
        identity,
        title=payload.title,
        patient_name=payload.patient_name,
        patient_cpf=payload.patient_cpf,
        process_number=payload.process_number,
        description=payload.description,
        priority=payload.priority,
        deadline=payload.deadline,
    )


@router.get("/", response_model=List[Case])
async def list_cases(identity: Identity = Depends(get_current_identity)) -> List[Case]:
    return case_service.list_cases(identity)


@router.get("/{case_id}", response_model=Case)
async def get_case(case_id: UUID, identity: Identity = Depends(get_current_identity)) -> Case:
    return case_service.get_case(identity, case_id)


@router.get("/{case_id}/timeline", response_model=List[TimelineEvent])
async def get_timeline(case_id: UUID, identity: Identity = Depends(get_current_identity)) -> List[TimelineEvent]:
    return [TimelineEvent(**event) for event in case_service.timeline(identity, case_id)]


@router.get("/{case_id}/messages", response_model=List[CaseMessage])
async def list_messages(case_id: UUID, identity: Identity = Depends(get_current_identity)) -> List[CaseMessage]:
    return message_service.list_messages(identity, case_id)


@router.post("/{case_id}/messages", response_model=CaseMessage, status_code=status.HTTP_201_CREATED)
async def send_message(
    case_id: UUID,
    payload: MessageCreateRequest,
    identity: Identity = Depends(get_current_identity),
) -> CaseMessage:
    return message_service.send(identity, case_id, payload.content)


@router.get("/{case_id}/documents", response_model=List[Document])
async def list_documents(case_id: UUID, identity: Identity = Depends(get_current_identity)) -> List[Document]:
    return document_service.list_documents(identity, case_id)


@router.post("/{case_id}/documents", response_model=Document, status_code=status.HTTP_201_CREATED)
async def upload_document(
    case_id: UUID,
    file: UploadFile = File(...),
    category: DocumentCategory = Form(DocumentCategory.OTHER),
    description: Optional[str] = Form(None),
    identity: Identity = Depends(get_current_identity),
) -> Document:
    content = await read_upload(file)
    upload = Upload(
        file_name=file.filename or "upload",
        content=content,
        category=category,
        content_type=file.content_type,
        description=description,
    )
    return document_service.upload(identity, case_id, upload)
