from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from src.casehub.domain.models.audit_log import AuditLogEntry
from src.casehub.domain.models.case import Case
from src.casehub.domain.models.case_message import CaseMessage
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.consultation import Consultation
from src.casehub.domain.models.document import Document, DocumentVersion
from src.casehub.domain.models.lgpd_consent import LgpdConsent
from src.casehub.domain.models.notification import Notification
from src.casehub.domain.models.profile import Profile, RoleAssignment, UserRole
from src.casehub.domain.models.report import Report


class CaseRepository(ABC):
    @abstractmethod
    def get(self, case_id: UUID) -> Optional[Case]:
        raise NotImplementedError

    @abstractmethod
    def list_by_attorney(self, attorney_id: UUID) -> List[Case]:
        """Cases owned by ``attorney_id``, newest first."""
        raise NotImplementedError

    @abstractmethod
    def save(self, case: Case) -> None:
        raise NotImplementedError


class CaseRequestRepository(ABC):
    """Storage for case requests.

    Status changes go through :meth:`update_if_status` and
    :meth:`delete_if_status`, which only apply when the stored status still
    equals the status (and version) the caller planned against.
    """

    @abstractmethod
    def get(self, request_id: UUID) -> Optional[CaseRequest]:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        case_id: Optional[UUID] = None,
        attorney_id: Optional[UUID] = None,
        physician_id: Optional[UUID] = None,
        specialist_id: Optional[UUID] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[CaseRequest]:
        """Matching requests, newest first."""
        raise NotImplementedError

    @abstractmethod
    def find_active_for_case(self, case_id: UUID) -> Optional[CaseRequest]:
        raise NotImplementedError

    @abstractmethod
    def add_if_no_active(self, request: CaseRequest) -> bool:
        """Insert ``request`` unless its case already has an active request."""
        raise NotImplementedError

    @abstractmethod
    def update_if_status(
        self,
        request_id: UUID,
        expected_status: RequestStatus,
        changes: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Optional[CaseRequest]:
        """Apply ``changes`` if the stored status is ``expected_status``.

        When ``expected_version`` is given the stored version must match too.
        Every successful write increments the version. Returns the updated
        request, or None when the request is gone or has moved on.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_if_status(
        self, request_id: UUID, expected_status: RequestStatus, *, expected_version: Optional[int] = None
    ) -> bool:
        raise NotImplementedError


class ConsultationRepository(ABC):
    @abstractmethod
    def get_by_request(self, case_request_id: UUID) -> Optional[Consultation]:
        raise NotImplementedError

    @abstractmethod
    def list_by_physician(self, physician_id: UUID) -> List[Consultation]:
        """Consultations of ``physician_id`` ordered by scheduled date."""
        raise NotImplementedError

    @abstractmethod
    def save(self, consultation: Consultation) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_request(self, case_request_id: UUID) -> int:
        raise NotImplementedError


class ReportRepository(ABC):
    @abstractmethod
    def get(self, report_id: UUID) -> Optional[Report]:
        raise NotImplementedError

    @abstractmethod
    def list_by_author(self, author_id: UUID) -> List[Report]:
        raise NotImplementedError

    @abstractmethod
    def list_by_request(self, case_request_id: UUID) -> List[Report]:
        raise NotImplementedError

    @abstractmethod
    def save(self, report: Report) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, report_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_request(self, case_request_id: UUID) -> int:
        raise NotImplementedError


class DocumentRepository(ABC):
    @abstractmethod
    def get(self, document_id: UUID) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    def list_by_case(self, case_id: UUID) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    def save(self, document: Document) -> None:
        raise NotImplementedError

    @abstractmethod
    def add_version(self, version: DocumentVersion) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_versions(self, document_id: UUID) -> List[DocumentVersion]:
        """Versions of a document, oldest first."""
        raise NotImplementedError


class CaseMessageRepository(ABC):
    @abstractmethod
    def list_by_case(self, case_id: UUID) -> List[CaseMessage]:
        """Messages of a case in chronological order."""
        raise NotImplementedError

    @abstractmethod
    def add(self, message: CaseMessage) -> None:
        raise NotImplementedError


class NotificationRepository(ABC):
    @abstractmethod
    def get(self, notification_id: UUID) -> Optional[Notification]:
        raise NotImplementedError

    @abstractmethod
    def list_by_user(self, user_id: UUID, *, unread_only: bool = False) -> List[Notification]:
        raise NotImplementedError

    @abstractmethod
    def add(self, notification: Notification) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_read(self, notification_id: UUID) -> None:
        raise NotImplementedError

    @abstractmethod
    def mark_all_read(self, user_id: UUID) -> int:
        raise NotImplementedError

    @abstractmethod
    def delete_by_user(self, user_id: UUID) -> int:
        raise NotImplementedError


class ProfileRepository(ABC):
    @abstractmethod
    def get_by_user(self, user_id: UUID) -> Optional[Profile]:
        raise NotImplementedError

    @abstractmethod
    def save(self, profile: Profile) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_user(self, user_id: UUID) -> int:
        raise NotImplementedError


class RoleRepository(ABC):
    @abstractmethod
    def list_by_user(self, user_id: UUID) -> List[RoleAssignment]:
        raise NotImplementedError

    @abstractmethod
    def list_users_with_role(self, role: UserRole) -> List[UUID]:
        raise NotImplementedError

    @abstractmethod
    def add(self, assignment: RoleAssignment) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_user(self, user_id: UUID) -> int:
        raise NotImplementedError


class ConsentRepository(ABC):
    @abstractmethod
    def list_by_user(self, user_id: UUID) -> List[LgpdConsent]:
        raise NotImplementedError

    @abstractmethod
    def add(self, consent: LgpdConsent) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_user(self, user_id: UUID) -> int:
        raise NotImplementedError


class AuditLogRepository(ABC):
    @abstractmethod
    def add(self, entry: AuditLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        user_id: Optional[UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Iterable[AuditLogEntry]:
        raise NotImplementedError
