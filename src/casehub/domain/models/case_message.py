from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class CaseMessage(BaseModel):
    id: UUID
    case_id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
