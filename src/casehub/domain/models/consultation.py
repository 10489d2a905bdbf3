from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ConsultationStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Consultation(BaseModel):
    """Examination session created when a physician accepts a request."""

    id: UUID
    case_request_id: UUID
    physician_id: UUID
    patient_name: str
    scheduled_at: Optional[datetime] = None
    status: ConsultationStatus = ConsultationStatus.SCHEDULED
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
