from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from src.casehub.domain.models.consultation import Consultation
from src.casehub.domain.models.profile import Identity
from src.casehub.security import get_api_key, get_current_identity
from src.casehub.services.consultations.service import consultation_service

router = APIRouter(
    prefix="/consultations",
    tags=["consultations"],
    dependencies=[Depends(get_api_key)],
)


@router.get("/", response_model=List[Consultation])
async def list_my_consultations(identity: Identity = Depends(get_current_identity)) -> List[Consultation]:
    return consultation_service.list_mine(identity)
