from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.lgpd.service import lgpd_service

router = APIRouter(
    prefix="/lgpd",
    tags=["lgpd"],
    dependencies=[Depends(get_api_key)],
)


@router.get("/export")
async def export_my_data(identity: Identity = Depends(get_current_identity)) -> Dict[str, Any]:
    """Everything stored about the caller, as JSON (right of access)."""

    return lgpd_service.export_data(identity)


@router.delete("/me")
async def delete_my_data(identity: Identity = Depends(get_current_identity)) -> Dict[str, Any]:
    """Erase the caller's personal data (right to erasure)."""

    return {"deleted": lgpd_service.delete_data(identity)}
