from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from src.casehub.domain.models.case import Case
from src.casehub.domain.models.case_request import CaseRequest, RequestStatus
from src.casehub.domain.models.consultation import Consultation
from src.casehub.domain.models.report import Report
from src.casehub.infra.db.models import CaseORM, CaseRequestORM, ConsultationORM, ReportORM
from src.casehub.infra.db.repositories import (
    CaseRepository,
    CaseRequestRepository,
    ConsultationRepository,
    ReportRepository,
)
from src.casehub.infra.db.session import SessionFactory, session_scope


class SqlCaseRepository(CaseRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, case_id: UUID) -> Optional[Case]:
        with session_scope(self._session_factory) as session:
            orm = session.get(CaseORM, case_id)
            return orm.to_domain() if orm is not None else None

    def list_by_attorney(self, attorney_id: UUID) -> List[Case]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(CaseORM).where(CaseORM.attorney_id == attorney_id).order_by(CaseORM.created_at.desc())
            )
            return [orm.to_domain() for orm in rows]

    def save(self, case: Case) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.get(CaseORM, case.id)
            if existing is None:
                session.add(CaseORM.from_domain(case))
            else:
                existing.apply_domain(case)
            session.commit()


def _current_row(request_id: UUID, expected_status: RequestStatus, expected_version: Optional[int]) -> list:
    clauses = [CaseRequestORM.id == request_id, CaseRequestORM.status == expected_status.value]
    if expected_version is not None:
        clauses.append(CaseRequestORM.version == expected_version)
    return clauses


class SqlCaseRequestRepository(CaseRequestRepository):
    """SQL-backed case requests.

    Status transitions are single conditional UPDATE/DELETE statements
    filtered on the expected status, so the database arbitrates races.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, request_id: UUID) -> Optional[CaseRequest]:
        with session_scope(self._session_factory) as session:
            orm = session.get(CaseRequestORM, request_id)
            return orm.to_domain() if orm is not None else None

    def list_by_filters(
        self,
        *,
        case_id: Optional[UUID] = None,
        attorney_id: Optional[UUID] = None,
        physician_id: Optional[UUID] = None,
        specialist_id: Optional[UUID] = None,
        status: Optional[RequestStatus] = None,
    ) -> List[CaseRequest]:
        with session_scope(self._session_factory) as session:
            query = select(CaseRequestORM)
            if case_id is not None:
                query = query.where(CaseRequestORM.case_id == case_id)
            if attorney_id is not None:
                query = query.where(CaseRequestORM.attorney_id == attorney_id)
            if physician_id is not None:
                query = query.where(CaseRequestORM.physician_id == physician_id)
            if specialist_id is not None:
                query = query.where(CaseRequestORM.specialist_id == specialist_id)
            if status is not None:
                query = query.where(CaseRequestORM.status == status.value)
            rows = session.scalars(query.order_by(CaseRequestORM.created_at.desc()))
            return [orm.to_domain() for orm in rows]

    def find_active_for_case(self, case_id: UUID) -> Optional[CaseRequest]:
        with session_scope(self._session_factory) as session:
            orm = session.scalars(
                select(CaseRequestORM)
                .where(
                    CaseRequestORM.case_id == case_id,
                    CaseRequestORM.status != RequestStatus.COMPLETED.value,
                )
                .limit(1)
            ).first()
            return orm.to_domain() if orm is not None else None

    def add_if_no_active(self, request: CaseRequest) -> bool:
        with session_scope(self._session_factory) as session:
            active = session.scalars(
                select(CaseRequestORM.id)
                .where(
                    CaseRequestORM.case_id == request.case_id,
                    CaseRequestORM.status != RequestStatus.COMPLETED.value,
                )
                .limit(1)
            ).first()
            if active is not None:
                return False
            session.add(CaseRequestORM.from_domain(request))
            try:
                session.commit()
            except IntegrityError:
                # uq_case_requests_active_case: another session inserted first.
                session.rollback()
                return False
            return True

    def update_if_status(
        self,
        request_id: UUID,
        expected_status: RequestStatus,
        changes: Dict[str, Any],
        *,
        expected_version: Optional[int] = None,
    ) -> Optional[CaseRequest]:
        values = CaseRequestORM.column_values(changes)
        values.setdefault("updated_at", datetime.now(timezone.utc))
        values["version"] = CaseRequestORM.version + 1
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(CaseRequestORM)
                .where(*_current_row(request_id, expected_status, expected_version))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
            orm = session.get(CaseRequestORM, request_id, populate_existing=True)
            return orm.to_domain() if orm is not None else None

    def delete_if_status(
        self, request_id: UUID, expected_status: RequestStatus, *, expected_version: Optional[int] = None
    ) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(CaseRequestORM)
                .where(*_current_row(request_id, expected_status, expected_version))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True


class SqlConsultationRepository(ConsultationRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_by_request(self, case_request_id: UUID) -> Optional[Consultation]:
        with session_scope(self._session_factory) as session:
            orm = session.scalars(
                select(ConsultationORM).where(ConsultationORM.case_request_id == case_request_id).limit(1)
            ).first()
            return orm.to_domain() if orm is not None else None

    def list_by_physician(self, physician_id: UUID) -> List[Consultation]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(ConsultationORM)
                .where(ConsultationORM.physician_id == physician_id)
                .order_by(ConsultationORM.scheduled_at.asc())
            )
            return [orm.to_domain() for orm in rows]

    def save(self, consultation: Consultation) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.get(ConsultationORM, consultation.id)
            if existing is None:
                session.add(ConsultationORM.from_domain(consultation))
            else:
                existing.apply_domain(consultation)
            session.commit()

    def delete_by_request(self, case_request_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(ConsultationORM).where(ConsultationORM.case_request_id == case_request_id)
            )
            session.commit()
            return result.rowcount or 0


class SqlReportRepository(ReportRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, report_id: UUID) -> Optional[Report]:
        with session_scope(self._session_factory) as session:
            orm = session.get(ReportORM, report_id)
            return orm.to_domain() if orm is not None else None

    def list_by_author(self, author_id: UUID) -> List[Report]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(ReportORM).where(ReportORM.author_id == author_id).order_by(ReportORM.created_at.desc())
            )
            return [orm.to_domain() for orm in rows]

    def list_by_request(self, case_request_id: UUID) -> List[Report]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(ReportORM)
                .where(ReportORM.case_request_id == case_request_id)
                .order_by(ReportORM.created_at.desc())
            )
            return [orm.to_domain() for orm in rows]

    def save(self, report: Report) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.get(ReportORM, report.id)
            if existing is None:
                session.add(ReportORM.from_domain(report))
            else:
                existing.apply_domain(report)
            session.commit()

    def delete(self, report_id: UUID) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(ReportORM).where(ReportORM.id == report_id))
            session.commit()

    def delete_by_request(self, case_request_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(ReportORM).where(ReportORM.case_request_id == case_request_id))
            session.commit()
            return result.rowcount or 0
