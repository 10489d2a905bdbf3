from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from src.casehub.domain.models.notification import Notification
from src.casehub.errors import AuthorizationError, NotFoundError, ValidationError
from src.casehub.infra.db.inmemory import Repositories, repositories

logger = logging.getLogger(__name__)


class NotificationService:
    """In-app notifications addressed to a single user."""

    def __init__(self, repos: Repositories = repositories) -> None:
        self._repos = repos

    def notify_user(
        self,
        recipient_id: UUID,
        *,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
    ) -> Notification:
        # Recipients must be known users; anything else is a programming
        # error upstream and is surfaced rather than silently stored.
        if self._repos.profiles.get_by_user(recipient_id) is None and not self._repos.roles.list_by_user(
            recipient_id
        ):
            raise ValidationError("Notification recipient does not exist", details={"user_id": str(recipient_id)})

        notification = Notification(
            id=uuid4(),
            user_id=recipient_id,
            title=title,
            message=message,
            type=type,
            link=link,
            created_at=datetime.now(timezone.utc),
        )
        self._repos.notifications.add(notification)
        logger.debug("Notification %s queued for %s", notification.id, recipient_id)
        return notification

    def list_for_user(self, user_id: UUID, *, unread_only: bool = False) -> List[Notification]:
        return self._repos.notifications.list_by_user(user_id, unread_only=unread_only)

    def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification:
        notification = self._repos.notifications.get(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.user_id != user_id:
            raise AuthorizationError("Notifications can only be marked read by their recipient")
        self._repos.notifications.mark_read(notification_id)
        return notification.model_copy(update={"read": True})

    def mark_all_read(self, user_id: UUID) -> int:
        return self._repos.notifications.mark_all_read(user_id)


notification_service = NotificationService()
