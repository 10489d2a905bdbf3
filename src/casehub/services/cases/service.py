from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from src.casehub.domain.models.case import Case, CasePriority, CaseStatus
from src.casehub.domain.models.case_request import CaseRequest
from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.errors import AuthorizationError, NotFoundError, ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.services.audit.service import audit_service
from src.casehub.services.realtime.service import change_feed

logger = logging.getLogger(__name__)


class CaseService:
    """Cases and the read-side views built around them."""

    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def create_case(
        self,
        identity: Identity,
        *,
        title: str,
        patient_name: str,
        patient_cpf: Optional[str] = None,
        process_number: Optional[str] = None,
        description: Optional[str] = None,
        priority: CasePriority = CasePriority.NORMAL,
        deadline: Optional[datetime] = None,
    ) -> Case:
        if identity.role != UserRole.ATTORNEY:
            raise AuthorizationError("Only attorneys can open cases")
        if not title or not title.strip():
            raise ValidationError("Case title is required", details={"field": "title"})
        if not patient_name or not patient_name.strip():
            raise ValidationError("Patient name is required", details={"field": "patient_name"})

        now = datetime.now(timezone.utc)
        case = Case(
            id=uuid4(),
            attorney_id=identity.user_id,
            title=title.strip(),
            patient_name=patient_name.strip(),
            patient_cpf=patient_cpf,
            process_number=process_number,
            description=description,
            priority=priority,
            status=CaseStatus.OPEN,
            deadline=deadline,
            created_at=now,
            updated_at=now,
        )
        self._repos.cases.save(case)
        audit_service.log_event(
            action="create",
            resource_type="case",
            resource_id=str(case.id),
            user_id=identity.user_id,
        )
        change_feed.publish("cases", "INSERT", case.id, case_id=case.id)
        return case

    def list_cases(self, identity: Identity) -> List[Case]:
        """Cases the caller can see.

        Attorneys see the cases they own; physicians and specialists see the
        cases behind requests assigned to them.
        """

        if identity.role == UserRole.ATTORNEY:
            return self._repos.cases.list_by_attorney(identity.user_id)

        if identity.role == UserRole.GENERAL_PHYSICIAN:
            requests = self._repos.requests.list_by_filters(physician_id=identity.user_id)
        else:
            requests = self._repos.requests.list_by_filters(specialist_id=identity.user_id)
        seen: Dict[UUID, Case] = {}
        for request in requests:
            if request.case_id in seen:
                continue
            case = self._repos.cases.get(request.case_id)
            if case is not None:
                seen[case.id] = case
        return sorted(seen.values(), key=lambda c: c.created_at, reverse=True)

    def get_case(self, identity: Identity, case_id: UUID) -> Case:
        case = self._repos.cases.get(case_id)
        if case is None:
            raise NotFoundError("Case not found")
        if not self.can_view(identity, case):
            # Hide existence from unrelated users.
            raise NotFoundError("Case not found")
        return case

    def get_owned_case(self, identity: Identity, case_id: UUID) -> Case:
        case = self.get_case(identity, case_id)
        if case.attorney_id != identity.user_id:
            raise AuthorizationError("Only the attorney who owns the case can do this")
        return case

    def can_view(self, identity: Identity, case: Case) -> bool:
        if case.attorney_id == identity.user_id:
            return True
        return any(
            _involves(request, identity.user_id)
            for request in self._repos.requests.list_by_filters(case_id=case.id)
        )

    def is_party(self, identity: Identity, case_id: UUID) -> bool:
        case = self._repos.cases.get(case_id)
        return case is not None and self.can_view(identity, case)

    def set_status(self, case_id: UUID, status: CaseStatus) -> Optional[Case]:
        """Move a case to ``status`` unless it has been archived."""

        case = self._repos.cases.get(case_id)
        if case is None:
            raise NotFoundError("Case not found")
        if case.status == CaseStatus.ARCHIVED or case.status == status:
            return case
        updated = case.model_copy(update={"status": status, "updated_at": datetime.now(timezone.utc)})
        self._repos.cases.save(updated)
        change_feed.publish("cases", "UPDATE", case_id, case_id=case_id)
        return updated

    def timeline(self, identity: Identity, case_id: UUID) -> List[Dict[str, Any]]:
        """Chronological history of a case, newest first."""

        case = self.get_case(identity, case_id)
        events: List[Dict[str, Any]] = [
            {
                "type": "case_created",
                "title": "Case opened",
                "description": case.title,
                "timestamp": case.created_at,
            }
        ]
        for request in self._repos.requests.list_by_filters(case_id=case.id):
            events.append(
                {
                    "type": "request_created",
                    "title": "Evidence request issued",
                    "description": f"{request.evidence_type} ({request.status.value})",
                    "timestamp": request.created_at,
                }
            )
            for report in self._repos.reports.list_by_request(request.id):
                events.append(
                    {
                        "type": "report_submitted",
                        "title": f"Report: {report.title}",
                        "description": f"{report.type.value} ({report.status.value})",
                        "timestamp": report.created_at,
                    }
                )
            consultation = self._repos.consultations.get_by_request(request.id)
            if consultation is not None:
                events.append(
                    {
                        "type": "consultation_scheduled",
                        "title": "Consultation scheduled",
                        "description": consultation.status.value,
                        "timestamp": consultation.created_at,
                    }
                )
        for document in self._repos.documents.list_by_case(case.id):
            events.append(
                {
                    "type": "document_uploaded",
                    "title": "Document uploaded",
                    "description": document.file_name,
                    "timestamp": document.created_at,
                }
            )
        events.sort(key=lambda e: e["timestamp"], reverse=True)
        return events


def _involves(request: CaseRequest, user_id: UUID) -> bool:
    return user_id in (request.attorney_id, request.physician_id, request.specialist_id)


case_service = CaseService()
