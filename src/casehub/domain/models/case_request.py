from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class RequestStatus(str, Enum):
    """Stored statuses of a case request.

    Deletion is the terminal outcome of a request and is not stored.
    """

    PENDING = "pending"
    SCHEDULING = "em_agendamento"
    ADJUSTING = "em_ajuste"
    ADJUSTMENT_REQUESTED = "solicitando_ajuste"
    CANCELLATION_REQUESTED = "solicitando_cancelamento"
    COMPLETED = "concluida"


class CaseRequest(BaseModel):
    """A formal ask from an attorney to a physician for medical evidence."""

    id: UUID
    case_id: UUID
    attorney_id: UUID
    physician_id: UUID
    specialist_id: Optional[UUID] = None
    evidence_type: str
    status: RequestStatus = RequestStatus.PENDING
    description: Optional[str] = None
    notes: Optional[str] = None
    deadline: Optional[datetime] = None
    report_forecast_date: Optional[datetime] = None
    # Who proposed cancellation, and the status to restore if it is withdrawn
    # or rejected. Both are only set while CANCELLATION_REQUESTED.
    cancel_requested_by: Optional[UUID] = None
    status_before_cancel: Optional[RequestStatus] = None
    # Bumped on every conditional write, so plans made against an older read
    # of the request fail even when the status is unchanged.
    version: int = 1
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status != RequestStatus.COMPLETED
