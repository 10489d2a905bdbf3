from __future__ import annotations

from datetime import datetime, timezone
from typing import List
from uuid import UUID, uuid4

from src.casehub.domain.models.case_message import CaseMessage
from src.casehub.domain.models.profile import Identity
from src.casehub.errors import ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.services.cases.service import case_service
from src.casehub.services.realtime.service import change_feed


class CaseMessageService:
    """Chat between the participants of a case."""

    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def send(self, identity: Identity, case_id: UUID, content: str) -> CaseMessage:
        case_service.get_case(identity, case_id)
        if not content or not content.strip():
            raise ValidationError("Message cannot be empty", details={"field": "content"})
        message = CaseMessage(
            id=uuid4(),
            case_id=case_id,
            sender_id=identity.user_id,
            content=content.strip(),
            created_at=datetime.now(timezone.utc),
        )
        self._repos.messages.add(message)
        change_feed.publish("case_messages", "INSERT", message.id, case_id=case_id)
        return message

    def list_messages(self, identity: Identity, case_id: UUID) -> List[CaseMessage]:
        case_service.get_case(identity, case_id)
        return self._repos.messages.list_by_case(case_id)


message_service = CaseMessageService()
