from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr

from src.casehub.domain.models.profile import Identity, Profile, UserRole
from src.casehub.security import get_api_key, get_current_identity, get_current_user_id
from src.casehub.services.profiles.service import profile_service

router = APIRouter(
    prefix="/profiles",
    tags=["profiles"],
    dependencies=[Depends(get_api_key)],
)


class RegisterRequest(BaseModel):
    role: UserRole
    full_name: str
    accepted_terms: bool = False
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    oab_number: Optional[str] = None
    crm_number: Optional[str] = None
    specialization: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None


class MeResponse(BaseModel):
    role: UserRole
    profile: Profile


@router.post("/register", response_model=MeResponse, status_code=status.HTTP_201_CREATED)
async def register(payload: RegisterRequest, user_id: UUID = Depends(get_current_user_id)) -> MeResponse:
    profile = profile_service.register(
        user_id,
        role=payload.role,
        full_name=payload.full_name,
        accepted_terms=payload.accepted_terms,
        email=payload.email,
        phone=payload.phone,
        oab_number=payload.oab_number,
        crm_number=payload.crm_number,
        specialization=payload.specialization,
    )
    return MeResponse(role=payload.role, profile=profile)


@router.get("/me", response_model=MeResponse)
async def get_me(identity: Identity = Depends(get_current_identity)) -> MeResponse:
    return MeResponse(role=identity.role, profile=profile_service.get_profile(identity.user_id))


@router.patch("/me", response_model=Profile)
async def update_me(payload: ProfileUpdateRequest, identity: Identity = Depends(get_current_identity)) -> Profile:
    return profile_service.update_profile(
        identity.user_id,
        full_name=payload.full_name,
        phone=payload.phone,
        specialization=payload.specialization,
    )


@router.get("/physicians", response_model=List[Profile])
async def list_physicians(
    specialists: bool = False,
    identity: Identity = Depends(get_current_identity),
) -> List[Profile]:
    """Registered physicians an attorney can assign to a request."""

    role = UserRole.SPECIALIST if specialists else UserRole.GENERAL_PHYSICIAN
    return profile_service.list_by_role(role)
