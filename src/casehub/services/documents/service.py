from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel

from src.casehub.config import settings
from src.casehub.domain.models.document import Document, DocumentCategory, DocumentVersion
from src.casehub.domain.models.profile import Identity
from src.casehub.errors import CaseHubError, NotFoundError, ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.infra.storage.blobs import BlobStorageBackend, blob_storage_backend, build_object_path
from src.casehub.services.audit.service import audit_service
from src.casehub.services.cases.service import case_service
from src.casehub.services.realtime.service import change_feed

logger = logging.getLogger(__name__)


@dataclass
class Upload:
    """A file handed over by the API layer, already read into memory."""

    file_name: str
    content: bytes
    category: DocumentCategory = DocumentCategory.OTHER
    content_type: Optional[str] = None
    description: Optional[str] = None


class FailedUpload(BaseModel):
    file_name: str
    category: DocumentCategory
    reason: str


class DocumentService:
    def __init__(self, repos: Repositories = repositories, storage: Optional[BlobStorageBackend] = None) -> None:
        self._repos = repos
        self._storage = storage

    @property
    def storage(self) -> BlobStorageBackend:
        return self._storage or blob_storage_backend

    def upload(self, identity: Identity, case_id: UUID, upload: Upload) -> Document:
        case_service.get_case(identity, case_id)
        return self._store(identity, case_id, upload)

    def upload_attachments(
        self,
        identity: Identity,
        case_id: UUID,
        uploads: Sequence[Upload],
    ) -> Tuple[List[Document], List[FailedUpload]]:
        """Upload several files, continuing past individual failures.

        Returns the stored documents and one entry per file that could not be
        stored, so callers can tell the user which ones to retry.
        """

        stored: List[Document] = []
        failed: List[FailedUpload] = []
        for upload in uploads:
            try:
                stored.append(self._store(identity, case_id, upload))
            except CaseHubError as exc:
                logger.warning("Upload of %s for case %s failed: %s", upload.category.value, case_id, exc.message)
                failed.append(FailedUpload(file_name=upload.file_name, category=upload.category, reason=exc.message))
        return stored, failed

    def list_documents(self, identity: Identity, case_id: UUID) -> List[Document]:
        case_service.get_case(identity, case_id)
        return self._repos.documents.list_by_case(case_id)

    def get_document(self, identity: Identity, document_id: UUID) -> Document:
        document = self._repos.documents.get(document_id)
        if document is None:
            raise NotFoundError("Document not found")
        case_service.get_case(identity, document.case_id)
        return document

    def add_version(self, identity: Identity, document_id: UUID, file_name: str, content: bytes) -> DocumentVersion:
        document = self.get_document(identity, document_id)
        self._check_size(Upload(file_name=file_name, content=content, category=document.category))
        versions = self._repos.documents.list_versions(document_id)
        path = build_object_path(str(document.case_id), document.category.value, file_name)
        self.storage.save_file(settings.documents_bucket, path, content)
        version = DocumentVersion(
            id=uuid4(),
            document_id=document_id,
            version_number=max((v.version_number for v in versions), default=0) + 1,
            file_path=path,
            uploaded_by=identity.user_id,
            created_at=datetime.now(timezone.utc),
        )
        self._repos.documents.add_version(version)
        # The document row points at the latest content.
        self._repos.documents.save(document.model_copy(update={"file_path": path, "file_size": len(content)}))
        audit_service.log_event(
            action="new_version",
            resource_type="document",
            resource_id=str(document_id),
            user_id=identity.user_id,
            details={"version_number": version.version_number},
        )
        change_feed.publish("document_versions", "INSERT", version.id, case_id=document.case_id)
        return version

    def list_versions(self, identity: Identity, document_id: UUID) -> List[DocumentVersion]:
        self.get_document(identity, document_id)
        return self._repos.documents.list_versions(document_id)

    def signed_url(self, identity: Identity, document_id: UUID) -> str:
        document = self.get_document(identity, document_id)
        url = self.storage.create_signed_url(settings.documents_bucket, document.file_path)
        audit_service.log_event(
            action="download",
            resource_type="document",
            resource_id=str(document_id),
            user_id=identity.user_id,
            details={"case_id": str(document.case_id)},
        )
        return url

    def _store(self, identity: Identity, case_id: UUID, upload: Upload) -> Document:
        self._check_size(upload)
        path = build_object_path(str(case_id), upload.category.value, upload.file_name)
        self.storage.save_file(settings.documents_bucket, path, upload.content, content_type=upload.content_type)
        now = datetime.now(timezone.utc)
        document = Document(
            id=uuid4(),
            case_id=case_id,
            file_name=upload.file_name,
            file_path=path,
            file_size=len(upload.content),
            file_type=upload.content_type,
            category=upload.category,
            description=upload.description,
            uploaded_by=identity.user_id,
            created_at=now,
        )
        self._repos.documents.save(document)
        self._repos.documents.add_version(
            DocumentVersion(
                id=uuid4(),
                document_id=document.id,
                version_number=1,
                file_path=path,
                uploaded_by=identity.user_id,
                created_at=now,
            )
        )
        change_feed.publish("documents", "INSERT", document.id, case_id=case_id)
        return document

    @staticmethod
    def rejection_reason(upload: Upload) -> Optional[str]:
        """Why ``upload`` cannot be stored, or None when it is acceptable."""

        if not upload.content:
            return "Uploaded file is empty"
        if len(upload.content) > settings.max_upload_bytes:
            return "Uploaded file is too large"
        return None

    def _check_size(self, upload: Upload) -> None:
        reason = self.rejection_reason(upload)
        if reason is not None:
            raise ValidationError(reason, details={"max_bytes": settings.max_upload_bytes})


document_service = DocumentService()
