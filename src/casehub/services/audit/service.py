from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from src.casehub.domain.models.audit_log import AuditLogEntry
from src.casehub.errors import StoreError
from src.casehub.infra.db.inmemory import Repositories, repositories

logger = logging.getLogger("audit")


class AuditService:
    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def log_event(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        user_id: Optional[UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        """Record a structured audit event.

        ``action`` is a verb such as "accept" or "download"; ``resource_type``
        names the table the event concerns ("case_request", "document").
        Keep ``details`` to ids and flags, never patient data.

        The event is always written to the ``audit`` logger. Persisting it to
        the audit table is best-effort: failures are logged and ``None`` is
        returned so auditing never breaks the main request flow.
        """

        entry = AuditLogEntry(
            id=uuid4(),
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or None,
            created_at=datetime.now(timezone.utc),
        )

        logger.info(json.dumps(entry.model_dump(mode="json"), default=str))

        try:
            self._repos.audit_logs.add(entry)
        except StoreError:
            logger.exception("Failed to persist audit event %s", action)
            return None
        return entry

    def list_events(
        self,
        *,
        user_id: Optional[UUID] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        return list(
            self._repos.audit_logs.list_by_filters(
                user_id=user_id, resource_type=resource_type, resource_id=resource_id
            )
        )


audit_service = AuditService()
