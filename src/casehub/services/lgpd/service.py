"""Data-subject rights under the LGPD: access (export) and erasure.

Erasure removes personal data the user owns directly. Cases, requests and
reports are shared records between several professionals and are retained.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID

from src.casehub.domain.models.profile import Identity
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.services.audit.service import audit_service


class LgpdService:
    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def export_data(self, identity: Identity) -> Dict[str, Any]:
        user_id = identity.user_id
        profile = self._repos.profiles.get_by_user(user_id)
        export = {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "user_id": str(user_id),
            "profile": profile.model_dump(mode="json") if profile is not None else None,
            "roles": [a.role.value for a in self._repos.roles.list_by_user(user_id)],
            "consents": [c.model_dump(mode="json") for c in self._repos.consents.list_by_user(user_id)],
            "notifications": [
                n.model_dump(mode="json") for n in self._repos.notifications.list_by_user(user_id)
            ],
        }
        audit_service.log_event(
            action="lgpd_export",
            resource_type="profile",
            resource_id=str(user_id),
            user_id=user_id,
        )
        return export

    def delete_data(self, identity: Identity) -> Dict[str, int]:
        user_id: UUID = identity.user_id
        # Audit first: after this the user no longer resolves to an identity.
        audit_service.log_event(
            action="lgpd_delete",
            resource_type="profile",
            resource_id=str(user_id),
            user_id=user_id,
        )
        return {
            "notifications": self._repos.notifications.delete_by_user(user_id),
            "consents": self._repos.consents.delete_by_user(user_id),
            "profiles": self._repos.profiles.delete_by_user(user_id),
            "roles": self._repos.roles.delete_by_user(user_id),
        }


lgpd_service = LgpdService()
