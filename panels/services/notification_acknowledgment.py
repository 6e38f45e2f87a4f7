"""
Acknowledgment workflow for View notifications.

State machine (enforced by ViewNotification.acknowledge/resolve):

    pending -> acknowledged -> resolved
    pending -> resolved

Nothing leaves resolved. acknowledged_at is set once, on the first
acknowledgment; acknowledging again is a no-op.

SECURITY: only the addressed user, within the tenant, can act on a
notification. Ids belonging to other users are skipped, not reported.
"""

import logging
from typing import Iterable, List

from sqlalchemy.orm import Session

from panels.models.view_notification import ViewNotification, NotificationStatus
from panels.services.errors import NotFoundError


logger = logging.getLogger(__name__)


class NotificationAcknowledgmentService:
    """Status transitions of View notifications."""

    def __init__(self, db_session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id

    def mark_read(self, notification_ids: Iterable[int], user_id: str) -> int:
        """
        Acknowledge the caller's pending notifications among the given ids.

        Args:
            notification_ids: Notification ids to acknowledge
            user_id: Caller; only notifications addressed to them are eligible

        Returns:
            Number of notifications moved from pending to acknowledged.
            Unknown ids, other users' ids and already read notifications
            are not counted.
        """
        ids = list({int(i) for i in notification_ids})
        if not ids:
            return 0

        notifications: List[ViewNotification] = (
            self.db.query(ViewNotification)
            .filter(
                ViewNotification.id.in_(ids),
                ViewNotification.tenant_id == self.tenant_id,
                ViewNotification.user_id == user_id,
                ViewNotification.status == NotificationStatus.PENDING.value,
            )
            .with_for_update()
            .all()
        )

        updated = sum(1 for notification in notifications if notification.acknowledge())
        self.db.commit()

        logger.info(
            "Notifications marked as read",
            extra={
                "tenant_id": self.tenant_id,
                "user_id": user_id,
                "requested": len(ids),
                "updated": updated,
            },
        )

        return updated

    def acknowledge(self, notification_id: int, user_id: str) -> ViewNotification:
        """
        Acknowledge one notification.

        Raises:
            NotFoundError: Not addressed to user_id within the tenant
            InvalidTransitionError: Notification already resolved
        """
        notification = self._get_for_user(notification_id, user_id)
        if notification.acknowledge():
            self.db.commit()
            logger.info(
                "Notification acknowledged",
                extra={
                    "tenant_id": self.tenant_id,
                    "notification_id": notification.id,
                    "user_id": user_id,
                },
            )
        return notification

    def resolve(self, notification_id: int, user_id: str) -> ViewNotification:
        """
        Resolve one notification, acknowledged or not.

        Raises:
            NotFoundError: Not addressed to user_id within the tenant
        """
        notification = self._get_for_user(notification_id, user_id)
        if notification.resolve():
            self.db.commit()
            logger.info(
                "Notification resolved",
                extra={
                    "tenant_id": self.tenant_id,
                    "notification_id": notification.id,
                    "user_id": user_id,
                },
            )
        return notification

    def resolve_for_view(self, view_id: str) -> int:
        """
        Administrative bulk resolution of every open notification of a View.

        Returns:
            Number of notifications resolved
        """
        notifications = (
            self.db.query(ViewNotification)
            .filter(
                ViewNotification.view_id == view_id,
                ViewNotification.tenant_id == self.tenant_id,
                ViewNotification.status != NotificationStatus.RESOLVED.value,
            )
            .with_for_update()
            .all()
        )

        resolved = sum(1 for notification in notifications if notification.resolve())
        self.db.commit()

        logger.info(
            "View notifications resolved",
            extra={
                "tenant_id": self.tenant_id,
                "view_id": view_id,
                "resolved": resolved,
            },
        )

        return resolved

    def _get_for_user(self, notification_id: int, user_id: str) -> ViewNotification:
        notification = (
            self.db.query(ViewNotification)
            .filter(
                ViewNotification.id == notification_id,
                ViewNotification.tenant_id == self.tenant_id,
                ViewNotification.user_id == user_id,
            )
            .with_for_update()
            .first()
        )

        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")

        return notification
