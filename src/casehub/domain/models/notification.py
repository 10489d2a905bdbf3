from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class Notification(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    type: str = "info"
    link: Optional[str] = None
    read: bool = False
    created_at: datetime
