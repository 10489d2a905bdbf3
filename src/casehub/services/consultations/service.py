from __future__ import annotations

from typing import List

from src.casehub.domain.models.consultation import Consultation
from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.errors import AuthorizationError
from src.casehub.infra.db.inmemory import Repositories, repositories


class ConsultationService:
    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def list_mine(self, identity: Identity) -> List[Consultation]:
        """Consultations scheduled for the calling physician, soonest first."""

        if identity.role != UserRole.GENERAL_PHYSICIAN:
            raise AuthorizationError("Only physicians have consultations")
        return self._repos.consultations.list_by_physician(identity.user_id)


consultation_service = ConsultationService()
