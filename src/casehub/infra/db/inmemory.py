from __future__ import annotations

from dataclasses import dataclass, fields
from threading import RLock
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel

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
from src.casehub.infra.db.repositories import (
    AuditLogRepository,
    CaseMessageRepository,
    CaseRepository,
    CaseRequestRepository,
    ConsentRepository,
    ConsultationRepository,
    DocumentRepository,
    NotificationRepository,
    ProfileRepository,
    ReportRepository,
    RoleRepository,
)

M = TypeVar("M", bound=BaseModel)


class _Table(Generic[M]):
    """Dict-backed table keyed by id.

    Rows are copied on the way in and out so callers never share mutable
    state with the store (and a stale read stays stale).
    """

    def __init__(self) -> None:
        self.lock = RLock()
        self._rows: Dict[UUID, M] = {}

    def get(self, key: UUID) -> Optional[M]:
        with self.lock:
            row = self._rows.get(key)
            return row.model_copy(deep=True) if row is not None else None

    def put(self, key: UUID, row: M) -> None:
        with self.lock:
            self._rows[key] = row.model_copy(deep=True)

    def pop(self, key: UUID) -> Optional[M]:
        with self.lock:
            return self._rows.pop(key, None)

    def select(self, predicate: Callable[[M], bool]) -> List[M]:
        with self.lock:
            return [row.model_copy(deep=True) for row in self._rows.values() if predicate(row)]

    def delete_where(self, predicate: Callable[[M], bool]) -> int:
        with self.lock:
            doomed = [key for key, row in self._rows.items() if predicate(row)]
            for key in doomed:
                del self._rows[key]
            return len(doomed)


class InMemoryCaseRepository(CaseRepository):
    def __init__(self) -> None:
        self._table: _Table[Case] = _Table()

    def get(self, case_id: UUID) -> Optional[Case]:
        return self._table.get(case_id)

    def list_by_attorney(self, attorney_id: UUID) -> List[Case]:
        cases = self._table.select(lambda c: c.attorney_id == attorney_id)
        return sorted(cases, key=lambda c: c.created_at, reverse=True)

    def save(self, case: Case) -> None:
        self._table.put(case.id, case)


def _is_current(
    current: Optional[CaseRequest], expected_status: RequestStatus, expected_version: Optional[int]
) -> bool:
    if current is None or current.status != expected_status:
        return False
    return expected_version is None or current.version == expected_version


class InMemoryCaseRequestRepository(CaseRequestRepository):
    def __init__(self) -> None:
        self._table: _Table[CaseRequest] = _Table()

    def get(self, request_id: UUID) -> Optional[CaseRequest]:
        return self._table.get(request_id)

    def list_by_filters(
        self,
        *,
        case_id: Optional[UUID] = None,
        attorney_id: Optional[UUID] = None,
        physician_id: Optional[UUID] = None,
        specialist_id: Optional[UUID] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[CaseRequest]:
        def matches(r: CaseRequest) -> bool:
            if case_id is not None and r.case_id != case_id:
                return False
            if attorney_id is not None and r.attorney_id != attorney_id:
                return False
            if physician_id is not None and r.physician_id != physician_id:
                return False
            if specialist_id is not None and r.specialist_id != specialist_id:
                return False
            if status is not None and r.status != status:
                return False
            return True

        return sorted(self._table.select(matches), key=lambda r: r.created_at, reverse=True)

    def find_active_for_case(self, case_id: UUID) -> Optional[CaseRequest]:
        active = self._table.select(lambda r: r.case_id == case_id and r.is_active)
        return active[0] if active else None

    def add_if_no_active(self, request: CaseRequest) -> bool:
        with self._table.lock:
            if self.find_active_for_case(request.case_id) is not None:
                return False
            self._table.put(request.id, request)
            return True

    def update_if_status(
        self,
        request_id: UUID,
        expected_status: RequestStatus,
        changes: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Optional[CaseRequest]:
        with self._table.lock:
            current = self._table.get(request_id)
            if not _is_current(current, expected_status, expected_version):
                return None
            updated = CaseRequest.model_validate(
                {**current.model_dump(), **changes, "version": current.version + 1}
            )
            self._table.put(request_id, updated)
            return updated.model_copy(deep=True)

    def delete_if_status(
        self, request_id: UUID, expected_status: RequestStatus, *, expected_version: Optional[int] = None
    ) -> bool:
        with self._table.lock:
            current = self._table.get(request_id)
            if not _is_current(current, expected_status, expected_version):
                return False
            self._table.pop(request_id)
            return True


class InMemoryConsultationRepository(ConsultationRepository):
    def __init__(self) -> None:
        self._table: _Table[Consultation] = _Table()

    def get_by_request(self, case_request_id: UUID) -> Optional[Consultation]:
        found = self._table.select(lambda c: c.case_request_id == case_request_id)
        return found[0] if found else None

    def list_by_physician(self, physician_id: UUID) -> List[Consultation]:
        found = self._table.select(lambda c: c.physician_id == physician_id)
        return sorted(found, key=lambda c: (c.scheduled_at is None, c.scheduled_at or c.created_at))

    def save(self, consultation: Consultation) -> None:
        self._table.put(consultation.id, consultation)

    def delete_by_request(self, case_request_id: UUID) -> int:
        return self._table.delete_where(lambda c: c.case_request_id == case_request_id)


class InMemoryReportRepository(ReportRepository):
    def __init__(self) -> None:
        self._table: _Table[Report] = _Table()

    def get(self, report_id: UUID) -> Optional[Report]:
        return self._table.get(report_id)

    def list_by_author(self, author_id: UUID) -> List[Report]:
        found = self._table.select(lambda r: r.author_id == author_id)
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def list_by_request(self, case_request_id: UUID) -> List[Report]:
        found = self._table.select(lambda r: r.case_request_id == case_request_id)
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    def save(self, report: Report) -> None:
        self._table.put(report.id, report)

    def delete(self, report_id: UUID) -> None:
        self._table.pop(report_id)

    def delete_by_request(self, case_request_id: UUID) -> int:
        return self._table.delete_where(lambda r: r.case_request_id == case_request_id)


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self) -> None:
        self._documents: _Table[Document] = _Table()
        self._versions: _Table[DocumentVersion] = _Table()

    def get(self, document_id: UUID) -> Optional[Document]:
        return self._documents.get(document_id)

    def list_by_case(self, case_id: UUID) -> List[Document]:
        found = self._documents.select(lambda d: d.case_id == case_id)
        return sorted(found, key=lambda d: d.created_at, reverse=True)

    def save(self, document: Document) -> None:
        self._documents.put(document.id, document)

    def add_version(self, version: DocumentVersion) -> None:
        self._versions.put(version.id, version)

    def list_versions(self, document_id: UUID) -> List[DocumentVersion]:
        found = self._versions.select(lambda v: v.document_id == document_id)
        return sorted(found, key=lambda v: v.version_number)


class InMemoryCaseMessageRepository(CaseMessageRepository):
    def __init__(self) -> None:
        self._table: _Table[CaseMessage] = _Table()

    def list_by_case(self, case_id: UUID) -> List[CaseMessage]:
        found = self._table.select(lambda m: m.case_id == case_id)
        return sorted(found, key=lambda m: m.created_at)

    def add(self, message: CaseMessage) -> None:
        self._table.put(message.id, message)


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self) -> None:
        self._table: _Table[Notification] = _Table()

    def get(self, notification_id: UUID) -> Optional[Notification]:
        return self._table.get(notification_id)

    def list_by_user(self, user_id: UUID, *, unread_only: bool = False) -> List[Notification]:
        found = self._table.select(lambda n: n.user_id == user_id and (not unread_only or not n.read))
        return sorted(found, key=lambda n: n.created_at, reverse=True)

    def add(self, notification: Notification) -> None:
        self._table.put(notification.id, notification)

    def mark_read(self, notification_id: UUID) -> None:
        with self._table.lock:
            current = self._table.get(notification_id)
            if current is not None:
                current.read = True
                self._table.put(notification_id, current)

    def mark_all_read(self, user_id: UUID) -> int:
        with self._table.lock:
            unread = self._table.select(lambda n: n.user_id == user_id and not n.read)
            for notification in unread:
                notification.read = True
                self._table.put(notification.id, notification)
            return len(unread)

    def delete_by_user(self, user_id: UUID) -> int:
        return self._table.delete_where(lambda n: n.user_id == user_id)


class InMemoryProfileRepository(ProfileRepository):
    def __init__(self) -> None:
        self._table: _Table[Profile] = _Table()

    def get_by_user(self, user_id: UUID) -> Optional[Profile]:
        found = self._table.select(lambda p: p.user_id == user_id)
        return found[0] if found else None

    def save(self, profile: Profile) -> None:
        self._table.put(profile.id, profile)

    def delete_by_user(self, user_id: UUID) -> int:
        return self._table.delete_where(lambda p: p.user_id == user_id)


class InMemoryRoleRepository(RoleRepository):
    def __init__(self) -> None:
        self._table: _Table[RoleAssignment] = _Table()

    def list_by_user(self, user_id: UUID) -> List[RoleAssignment]:
        return self._table.select(lambda a: a.user_id == user_id)

    def list_users_with_role(self, role: UserRole) -> List[UUID]:
        return [a.user_id for a in self._table.select(lambda a: a.role == role)]

    def add(self, assignment: RoleAssignment) -> None:
        self._table.put(assignment.id, assignment)

    def delete_by_user(self, user_id: UUID) -> int:
        return self._table.delete_where(lambda a: a.user_id == user_id)


class InMemoryConsentRepository(ConsentRepository):
    def __init__(self) -> None:
        self._table: _Table[LgpdConsent] = _Table()

    def list_by_user(self, user_id: UUID) -> List[LgpdConsent]:
        found = self._table.select(lambda c: c.user_id == user_id)
        return sorted(found, key=lambda c: c.created_at)

    def add(self, consent: LgpdConsent) -> None:
        self._table.put(consent.id, consent)

    def delete_by_user(self, user_id: UUID) -> int:
        return self._table.delete_where(lambda c: c.user_id == user_id)


class InMemoryAuditLogRepository(AuditLogRepository):
    def __init__(self) -> None:
        self._table: _Table[AuditLogEntry] = _Table()

    def add(self, entry: AuditLogEntry) -> None:
        self._table.put(entry.id, entry)

    def list_by_filters(
        self,
        *,
        user_id: Optional[UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Iterable[AuditLogEntry]:
        def matches(e: AuditLogEntry) -> bool:
            if user_id is not None and e.user_id != user_id:
                return False
            if resource_type is not None and e.resource_type != resource_type:
                return False
            if resource_id is not None and e.resource_id != resource_id:
                return False
            return True

        return sorted(self._table.select(matches), key=lambda e: e.created_at)


@dataclass
class Repositories:
    """The set of repositories services read and write through.

    Services hold a reference to this object and look repositories up at call
    time, so :func:`src.casehub.infra.db.bootstrap.init_sql_repositories` can
    swap implementations after import.
    """

    cases: CaseRepository
    requests: CaseRequestRepository
    consultations: ConsultationRepository
    reports: ReportRepository
    documents: DocumentRepository
    messages: CaseMessageRepository
    notifications: NotificationRepository
    profiles: ProfileRepository
    roles: RoleRepository
    consents: ConsentRepository
    audit_logs: AuditLogRepository

    def replace_with(self, other: "Repositories") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))


def build_inmemory_repositories() -> Repositories:
    return Repositories(
        cases=InMemoryCaseRepository(),
        requests=InMemoryCaseRequestRepository(),
        consultations=InMemoryConsultationRepository(),
        reports=InMemoryReportRepository(),
        documents=InMemoryDocumentRepository(),
        messages=InMemoryCaseMessageRepository(),
        notifications=InMemoryNotificationRepository(),
        profiles=InMemoryProfileRepository(),
        roles=InMemoryRoleRepository(),
        consents=InMemoryConsentRepository(),
        audit_logs=InMemoryAuditLogRepository(),
    )


repositories = build_inmemory_repositories()
