from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, UploadFile, status

from src.casehub.api.v1.routes_cases import read_upload
from src.casehub.api.v1.routes_reports import SignedUrlResponse
from src.casehub.config import settings
from src.casehub.domain.models.document import Document, DocumentVersion
from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.documents.service import document_service

router = APIRouter(
    prefix="/documents",
    tags=["documents"],
    dependencies=[Depends(get_api_key)],
)


@router.get("/{document_id}", response_model=Document)
async def get_document(document_id: UUID, identity: Identity = Depends(get_current_identity)) -> Document:
    return document_service.get_document(identity, document_id)


@router.get("/{document_id}/download-url", response_model=SignedUrlResponse)
async def get_document_download_url(
    document_id: UUID, identity: Identity = Depends(get_current_identity)
) -> SignedUrlResponse:
    """Time-limited download link. Every call is recorded in the audit log."""

    url = document_service.signed_url(identity, document_id)
    return SignedUrlResponse(url=url, expires_in=settings.signed_url_ttl_seconds)


@router.get("/{document_id}/versions", response_model=List[DocumentVersion])
async def list_versions(document_id: UUID, identity: Identity = Depends(get_current_identity)) -> List[DocumentVersion]:
    return document_service.list_versions(identity, document_id)


@router.post("/{document_id}/versions", response_model=DocumentVersion, status_code=status.HTTP_201_CREATED)
async def upload_version(
    document_id: UUID,
    file: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity),
) -> DocumentVersion:
    content = await read_upload(file)
    return document_service.add_version(identity, document_id, file.filename or "upload", content)
