from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from src.casehub.config import settings
from src.casehub.domain.models.profile import Identity
from src.casehub.domain.models.report import Report
from src.casehub.errors import NotFoundError, ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.infra.storage.blobs import BlobStorageBackend, blob_storage_backend
from src.casehub.services.audit.service import audit_service
from src.casehub.services.cases.service import case_service


class ReportService:
    """Read access to reports. Reports are written by the request workflow."""

    def __init__(self, repos: Repositories = repositories, storage: Optional[BlobStorageBackend] = None) -> None:
        self._repos = repos
        self._storage = storage

    def list_mine(self, identity: Identity) -> List[Report]:
        return self._repos.reports.list_by_author(identity.user_id)

    def list_for_request(self, identity: Identity, request_id: UUID) -> List[Report]:
        request = self._repos.requests.get(request_id)
        if request is None:
            raise NotFoundError("Case request not found")
        case_service.get_case(identity, request.case_id)
        return self._repos.reports.list_by_request(request_id)

    def get_report(self, identity: Identity, report_id: UUID) -> Report:
        report = self._repos.reports.get(report_id)
        if report is None:
            raise NotFoundError("Report not found")
        request = self._repos.requests.get(report.case_request_id)
        if request is None:
            raise NotFoundError("Report not found")
        case_service.get_case(identity, request.case_id)
        return report

    def signed_url(self, identity: Identity, report_id: UUID) -> str:
        report = self.get_report(identity, report_id)
        if not report.file_path:
            raise ValidationError("Report has no attached file", details={"report_id": str(report_id)})
        storage = self._storage or blob_storage_backend
        url = storage.create_signed_url(settings.reports_bucket, report.file_path)
        audit_service.log_event(
            action="download",
            resource_type="report",
            resource_id=str(report_id),
            user_id=identity.user_id,
        )
        return url


report_service = ReportService()
