from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

TERMS_OF_USE_AND_PRIVACY = "terms_of_use_and_privacy"


class LgpdConsent(BaseModel):
    id: UUID
    user_id: UUID
    consent_type: str
    accepted: bool = False
    accepted_at: Optional[datetime] = None
    created_at: datetime
