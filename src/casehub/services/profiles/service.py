from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from src.casehub.domain.models.lgpd_consent import TERMS_OF_USE_AND_PRIVACY, LgpdConsent
from src.casehub.domain.models.profile import Profile, RoleAssignment, UserRole
from src.casehub.errors import NotFoundError, ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.services.audit.service import audit_service

logger = logging.getLogger(__name__)


class ProfileService:
    """Registration and lookup of users, their role and LGPD consent.

    Authentication itself belongs to the identity provider; this service only
    stores what the application needs to know about an authenticated user.
    """

    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def register(
        self,
        user_id: UUID,
        *,
        role: UserRole,
        full_name: str,
        accepted_terms: bool,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        oab_number: Optional[str] = None,
        crm_number: Optional[str] = None,
        specialization: Optional[str] = None,
    ) -> Profile:
        if self.get_role(user_id) is not None:
            raise ValidationError("User is already registered", details={"user_id": str(user_id)})
        if not full_name or not full_name.strip():
            raise ValidationError("Full name is required", details={"field": "full_name"})
        if role == UserRole.ATTORNEY and not (oab_number or "").strip():
            raise ValidationError("OAB number is required for attorneys", details={"field": "oab_number"})
        if role in (UserRole.GENERAL_PHYSICIAN, UserRole.SPECIALIST) and not (crm_number or "").strip():
            raise ValidationError("CRM number is required for physicians", details={"field": "crm_number"})
        if not accepted_terms:
            raise ValidationError(
                "Terms of use and privacy policy must be accepted",
                details={"field": "accepted_terms"},
            )

        now = datetime.now(timezone.utc)
        profile = Profile(
            id=uuid4(),
            user_id=user_id,
            full_name=full_name.strip(),
            email=email,
            phone=phone,
            oab_number=oab_number if role == UserRole.ATTORNEY else None,
            crm_number=crm_number if role != UserRole.ATTORNEY else None,
            specialization=specialization if role == UserRole.SPECIALIST else None,
            created_at=now,
            updated_at=now,
        )
        self._repos.roles.add(RoleAssignment(id=uuid4(), user_id=user_id, role=role))
        self._repos.profiles.save(profile)
        self._repos.consents.add(
            LgpdConsent(
                id=uuid4(),
                user_id=user_id,
                consent_type=TERMS_OF_USE_AND_PRIVACY,
                accepted=True,
                accepted_at=now,
                created_at=now,
            )
        )
        audit_service.log_event(
            action="register",
            resource_type="profile",
            resource_id=str(profile.id),
            user_id=user_id,
            details={"role": role.value},
        )
        logger.info("Registered user %s as %s", user_id, role.value)
        return profile

    def get_role(self, user_id: UUID) -> Optional[UserRole]:
        assignments = self._repos.roles.list_by_user(user_id)
        if not assignments:
            return None
        return assignments[0].role

    def get_profile(self, user_id: UUID) -> Profile:
        profile = self._repos.profiles.get_by_user(user_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    def update_profile(
        self,
        user_id: UUID,
        *,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        specialization: Optional[str] = None,
    ) -> Profile:
        profile = self.get_profile(user_id)
        update = {"updated_at": datetime.now(timezone.utc)}
        if full_name is not None:
            if not full_name.strip():
                raise ValidationError("Full name is required", details={"field": "full_name"})
            update["full_name"] = full_name.strip()
        if phone is not None:
            update["phone"] = phone
        if specialization is not None and self.get_role(user_id) == UserRole.SPECIALIST:
            update["specialization"] = specialization
        updated = profile.model_copy(update=update)
        self._repos.profiles.save(updated)
        return updated

    def list_by_role(self, role: UserRole) -> List[Profile]:
        """Registered users holding ``role``, e.g. physicians an attorney can assign."""

        profiles = []
        for user_id in self._repos.roles.list_users_with_role(role):
            profile = self._repos.profiles.get_by_user(user_id)
            if profile is not None:
                profiles.append(profile)
        return sorted(profiles, key=lambda p: p.full_name.lower())


profile_service = ProfileService()
