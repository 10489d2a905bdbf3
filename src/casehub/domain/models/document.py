from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class DocumentCategory(str, Enum):
    IDENTIFICATION = "identification"
    PROOF_OF_ADDRESS = "proof_of_address"
    PRIOR_REPORTS = "prior_reports"
    EXAMS = "exams"
    PRESCRIPTIONS = "prescriptions"
    OTHER = "other"


MANDATORY_CATEGORIES = frozenset({DocumentCategory.IDENTIFICATION, DocumentCategory.PROOF_OF_ADDRESS})
OPTIONAL_CATEGORIES = frozenset(
    {DocumentCategory.PRIOR_REPORTS, DocumentCategory.EXAMS, DocumentCategory.PRESCRIPTIONS}
)


class Document(BaseModel):
    id: UUID
    case_id: UUID
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    category: DocumentCategory = DocumentCategory.OTHER
    description: Optional[str] = None
    uploaded_by: UUID
    created_at: datetime


class DocumentVersion(BaseModel):
    id: UUID
    document_id: UUID
    version_number: int
    file_path: str
    uploaded_by: UUID
    created_at: datetime
