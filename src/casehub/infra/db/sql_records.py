from __future__ import annotations

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update

from src.casehub.domain.models.audit_log import AuditLogEntry
from src.casehub.domain.models.case_message import CaseMessage
from src.casehub.domain.models.document import Document, DocumentVersion
from src.casehub.domain.models.lgpd_consent import LgpdConsent
from src.casehub.domain.models.notification import Notification
from src.casehub.domain.models.profile import Profile, RoleAssignment, UserRole
from src.casehub.infra.db.models_records import (
    AuditLogORM,
    CaseMessageORM,
    DocumentORM,
    DocumentVersionORM,
    LgpdConsentORM,
    NotificationORM,
    ProfileORM,
    RoleAssignmentORM,
)
from src.casehub.infra.db.repositories import (
    AuditLogRepository,
    CaseMessageRepository,
    ConsentRepository,
    DocumentRepository,
    NotificationRepository,
    ProfileRepository,
    RoleRepository,
)
from src.casehub.infra.db.session import SessionFactory, session_scope


class SqlDocumentRepository(DocumentRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, document_id: UUID) -> Optional[Document]:
        with session_scope(self._session_factory) as session:
            orm = session.get(DocumentORM, document_id)
            return orm.to_domain() if orm is not None else None

    def list_by_case(self, case_id: UUID) -> List[Document]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(DocumentORM).where(DocumentORM.case_id == case_id).order_by(DocumentORM.created_at.desc())
            )
            return [orm.to_domain() for orm in rows]

    def save(self, document: Document) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.get(DocumentORM, document.id)
            if existing is None:
                session.add(DocumentORM.from_domain(document))
            else:
                existing.apply_domain(document)
            session.commit()

    def add_version(self, version: DocumentVersion) -> None:
        with session_scope(self._session_factory) as session:
            session.add(DocumentVersionORM.from_domain(version))
            session.commit()

    def list_versions(self, document_id: UUID) -> List[DocumentVersion]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(DocumentVersionORM)
                .where(DocumentVersionORM.document_id == document_id)
                .order_by(DocumentVersionORM.version_number.asc())
            )
            return [orm.to_domain() for orm in rows]


class SqlCaseMessageRepository(CaseMessageRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def list_by_case(self, case_id: UUID) -> List[CaseMessage]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(CaseMessageORM)
                .where(CaseMessageORM.case_id == case_id)
                .order_by(CaseMessageORM.created_at.asc())
            )
            return [orm.to_domain() for orm in rows]

    def add(self, message: CaseMessage) -> None:
        with session_scope(self._session_factory) as session:
            session.add(CaseMessageORM.from_domain(message))
            session.commit()


class SqlNotificationRepository(NotificationRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, notification_id: UUID) -> Optional[Notification]:
        with session_scope(self._session_factory) as session:
            orm = session.get(NotificationORM, notification_id)
            return orm.to_domain() if orm is not None else None

    def list_by_user(self, user_id: UUID, *, unread_only: bool = False) -> List[Notification]:
        with session_scope(self._session_factory) as session:
            query = select(NotificationORM).where(NotificationORM.user_id == user_id)
            if unread_only:
                query = query.where(NotificationORM.read.is_(False))
            rows = session.scalars(query.order_by(NotificationORM.created_at.desc()))
            return [orm.to_domain() for orm in rows]

    def add(self, notification: Notification) -> None:
        with session_scope(self._session_factory) as session:
            session.add(NotificationORM.from_domain(notification))
            session.commit()

    def mark_read(self, notification_id: UUID) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(update(NotificationORM).where(NotificationORM.id == notification_id).values(read=True))
            session.commit()

    def mark_all_read(self, user_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(NotificationORM)
                .where(NotificationORM.user_id == user_id, NotificationORM.read.is_(False))
                .values(read=True)
            )
            session.commit()
            return result.rowcount or 0

    def delete_by_user(self, user_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(NotificationORM).where(NotificationORM.user_id == user_id))
            session.commit()
            return result.rowcount or 0


class SqlProfileRepository(ProfileRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_by_user(self, user_id: UUID) -> Optional[Profile]:
        with session_scope(self._session_factory) as session:
            orm = session.scalars(select(ProfileORM).where(ProfileORM.user_id == user_id)).first()
            return orm.to_domain() if orm is not None else None

    def save(self, profile: Profile) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.get(ProfileORM, profile.id)
            if existing is None:
                session.add(ProfileORM.from_domain(profile))
            else:
                existing.apply_domain(profile)
            session.commit()

    def delete_by_user(self, user_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(ProfileORM).where(ProfileORM.user_id == user_id))
            session.commit()
            return result.rowcount or 0


class SqlRoleRepository(RoleRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def list_by_user(self, user_id: UUID) -> List[RoleAssignment]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(select(RoleAssignmentORM).where(RoleAssignmentORM.user_id == user_id))
            return [orm.to_domain() for orm in rows]

    def list_users_with_role(self, role: UserRole) -> List[UUID]:
        with session_scope(self._session_factory) as session:
            return list(session.scalars(select(RoleAssignmentORM.user_id).where(RoleAssignmentORM.role == role.value)))

    def add(self, assignment: RoleAssignment) -> None:
        with session_scope(self._session_factory) as session:
            session.add(RoleAssignmentORM.from_domain(assignment))
            session.commit()

    def delete_by_user(self, user_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(RoleAssignmentORM).where(RoleAssignmentORM.user_id == user_id))
            session.commit()
            return result.rowcount or 0


class SqlConsentRepository(ConsentRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def list_by_user(self, user_id: UUID) -> List[LgpdConsent]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(LgpdConsentORM)
                .where(LgpdConsentORM.user_id == user_id)
                .order_by(LgpdConsentORM.created_at.asc())
            )
            return [orm.to_domain() for orm in rows]

    def add(self, consent: LgpdConsent) -> None:
        with session_scope(self._session_factory) as session:
            session.add(LgpdConsentORM.from_domain(consent))
            session.commit()

    def delete_by_user(self, user_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(LgpdConsentORM).where(LgpdConsentORM.user_id == user_id))
            session.commit()
            return result.rowcount or 0


class SqlAuditLogRepository(AuditLogRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def add(self, entry: AuditLogEntry) -> None:
        with session_scope(self._session_factory) as session:
            session.add(AuditLogORM.from_domain(entry))
            session.commit()

    def list_by_filters(
        self,
        *,
        user_id: Optional[UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Iterable[AuditLogEntry]:
        with session_scope(self._session_factory) as session:
            query = select(AuditLogORM)
            if user_id is not None:
                query = query.where(AuditLogORM.user_id == user_id)
            if resource_type is not None:
                query = query.where(AuditLogORM.resource_type == resource_type)
            if resource_id is not None:
                query = query.where(AuditLogORM.resource_id == resource_id)
            rows = session.scalars(query.order_by(AuditLogORM.created_at.asc()))
            return [orm.to_domain() for orm in rows]
