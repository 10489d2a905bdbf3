from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr


class UserRole(str, Enum):
    ATTORNEY = "attorney"
    GENERAL_PHYSICIAN = "general_physician"
    SPECIALIST = "specialist"


class Profile(BaseModel):
    """Identity metadata for a user registered with the identity provider."""

    id: UUID
    user_id: UUID
    full_name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    # Professional registrations: OAB for attorneys, CRM for physicians.
    oab_number: Optional[str] = None
    crm_number: Optional[str] = None
    specialization: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RoleAssignment(BaseModel):
    id: UUID
    user_id: UUID
    role: UserRole


class Identity(BaseModel):
    """The caller of a workflow operation, as issued by the identity provider.

    Passed explicitly into every engine and service call; nothing downstream
    reads the current user from ambient state.
    """

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    role: UserRole
