from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CasePriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class CaseStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    AWAITING_REPORT = "awaiting_report"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class Case(BaseModel):
    """A legal case, owned exclusively by the attorney who opened it."""

    id: UUID
    attorney_id: UUID
    title: str
    patient_name: str
    patient_cpf: Optional[str] = None
    process_number: Optional[str] = None
    description: Optional[str] = None
    priority: CasePriority = CasePriority.NORMAL
    status: CaseStatus = CaseStatus.OPEN
    deadline: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
