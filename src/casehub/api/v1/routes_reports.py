from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.casehub.config import settings
from src.casehub.domain.models.profile import Identity
from src.casehub.domain.models.report import Report
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.reports.service import report_service

router = APIRouter(
    prefix="/reports",
    tags=["reports"],
    dependencies=[Depends(get_api_key)],
)


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


@router.get("/", response_model=List[Report])
async def list_my_reports(identity: Identity = Depends(get_current_identity)) -> List[Report]:
    return report_service.list_mine(identity)


@router.get("/by-request/{request_id}", response_model=List[Report])
async def list_request_reports(request_id: UUID, identity: Identity = Depends(get_current_identity)) -> List[Report]:
    return report_service.list_for_request(identity, request_id)


@router.get("/{report_id}/download-url", response_model=SignedUrlResponse)
async def get_report_download_url(
    report_id: UUID, identity: Identity = Depends(get_current_identity)
) -> SignedUrlResponse:
    url = report_service.signed_url(identity, report_id)
    return SignedUrlResponse(url=url, expires_in=settings.signed_url_ttl_seconds)
