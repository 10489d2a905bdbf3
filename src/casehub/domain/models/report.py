from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ReportType(str, Enum):
    PRE_REPORT = "pre_report"
    FINAL_REPORT = "final_report"


class ReportStatus(str, Enum):
    DRAFT = "draft"
    DELIVERED = "delivered"


class Report(BaseModel):
    id: UUID
    case_request_id: UUID
    author_id: UUID
    title: str
    type: ReportType = ReportType.FINAL_REPORT
    status: ReportStatus = ReportStatus.DRAFT
    content: Optional[str] = None
    file_path: Optional[str] = None
    created_at: datetime
    updated_at: datetime
