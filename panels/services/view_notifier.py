"""
View notifier - Projects classified Panel changes into ViewNotifications.

Idempotent: a (View, PanelChange, recipient) triple gets at most one
notification. Re-running notify() after a crash, or from a retrying worker,
returns the rows that already exist instead of creating duplicates.

The dedup check is check-then-insert inside a SAVEPOINT, backed by a unique
constraint. If a concurrent notifier wins the race the unique constraint
fires; that is logged as a ConflictError and the existing row is used.

Recipients: v1 addresses the View owner only. resolve_recipients() is the
extension point for other stakeholders.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from panels.models.panel_change import PanelChange, ChangeType
from panels.models.view import View
from panels.models.view_notification import (
    ViewNotification,
    NotificationImpact,
    NotificationStatus,
)
from panels.services.errors import ConflictError, ValidationError
from panels.services.impact_classifier import ClassifiedView, ViewDefinition


logger = logging.getLogger(__name__)


def _column_label(change: PanelChange) -> str:
    """Column name from the change payload, falling back to its id."""
    for state in (change.after_state, change.before_state):
        if isinstance(state, dict) and state.get("name"):
            return state["name"]
    return change.affected_column or "unknown"


def build_message(change: PanelChange, classified: ClassifiedView) -> str:
    """Human-readable notification text for one classified View."""
    panel_name = change.panel.name if change.panel is not None else change.panel_id
    view_name = classified.view.name
    column = _column_label(change)
    change_type = ChangeType(change.change_type)

    if classified.impact == NotificationImpact.BREAKING:
        verb = "removed from" if change_type == ChangeType.COLUMN_REMOVED else "modified in"
        used_in = ", ".join(classified.references) or "definition"
        return (
            f'Column "{column}" was {verb} panel "{panel_name}" and is used by '
            f'view "{view_name}" ({used_in}). The view may no longer display as defined.'
        )

    if change_type == ChangeType.COLUMN_ADDED:
        return f'Column "{column}" was added to panel "{panel_name}". It can now be used in view "{view_name}".'
    if change_type == ChangeType.COLUMN_MODIFIED:
        return f'Column "{column}" was modified in panel "{panel_name}". View "{view_name}" does not use it.'
    if change_type == ChangeType.COLUMN_REMOVED:
        return f'Column "{column}" was removed from panel "{panel_name}". View "{view_name}" does not use it.'
    if change_type == ChangeType.SOURCE_CHANGED:
        return (
            f'The data sources of panel "{panel_name}" changed. '
            f'Data shown in view "{view_name}" may differ.'
        )
    return (
        f'The cohort rule of panel "{panel_name}" changed. '
        f'Patients shown in view "{view_name}" may differ.'
    )


class ViewNotifier:
    """Creates ViewNotifications for classified changes and manual alerts."""

    def __init__(self, db_session: Session, tenant_id: str):
        """
        Initialize view notifier.

        Args:
            db_session: Database session
            tenant_id: Tenant identifier
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id

    def resolve_recipients(self, view: ViewDefinition) -> List[str]:
        """Users to notify about a View. v1: the owner only."""
        return [view.owner_user_id]

    def notify(
        self,
        change: PanelChange,
        classified: Iterable[ClassifiedView],
    ) -> List[ViewNotification]:
        """
        Persist one pending notification per classified View and recipient.

        Idempotent: existing notifications for the same (View, change,
        recipient) are returned instead of creating new rows.

        Args:
            change: The recorded PanelChange (must be flushed, id assigned)
            classified: Output of the impact classifier for this change

        Returns:
            Notifications for every classified View, new or pre-existing
        """
        if change.id is None:
            raise ValidationError("PanelChange must be recorded before notifying")

        notifications = []
        created = 0

        for item in classified:
            if item.view.tenant_id != self.tenant_id:
                logger.warning(
                    "Skipping view outside tenant",
                    extra={"tenant_id": self.tenant_id, "view_id": item.view_id},
                )
                continue

            message = build_message(change, item)
            for user_id in self.resolve_recipients(item.view):
                existing = self._find_existing(item.view_id, change.id, user_id)
                if existing is not None:
                    notifications.append(existing)
                    continue

                notification, is_new = self._insert(
                    ViewNotification(
                        tenant_id=self.tenant_id,
                        user_id=user_id,
                        view_id=item.view_id,
                        panel_change_id=change.id,
                        status=NotificationStatus.PENDING.value,
                        impact=NotificationImpact(item.impact).value,
                        message=message,
                    )
                )
                if notification is None:
                    continue
                notifications.append(notification)
                if is_new:
                    created += 1

        logger.info(
            "View notifications delivered",
            extra={
                "tenant_id": self.tenant_id,
                "change_id": change.id,
                "created_count": created,
                "existing_count": len(notifications) - created,
            },
        )

        return notifications

    def notify_view_published(self, view: View) -> ViewNotification:
        """Announce that a View was published. Not tied to a PanelChange."""
        return self.notify_manual(
            view,
            NotificationImpact.INFO,
            f'New view "{view.name}" has been published',
        )

    def notify_manual(
        self,
        view: View,
        impact: NotificationImpact,
        message: str,
        user_id: Optional[str] = None,
    ) -> ViewNotification:
        """
        Create a notification without a structural change.

        Args:
            view: View the alert is about
            impact: Severity of the alert
            message: Alert text
            user_id: Recipient (defaults to the View owner)
        """
        if view.tenant_id != self.tenant_id:
            raise ValidationError("View does not belong to this tenant")

        notification = ViewNotification(
            tenant_id=self.tenant_id,
            user_id=user_id or view.owner_user_id,
            view_id=view.id,
            panel_change_id=None,
            status=NotificationStatus.PENDING.value,
            impact=NotificationImpact(impact).value,
            message=message,
        )
        self.db.add(notification)
        self.db.flush()

        logger.info(
            "Manual view notification created",
            extra={
                "tenant_id": self.tenant_id,
                "view_id": view.id,
                "notification_id": notification.id,
                "impact": notification.impact,
            },
        )

        return notification

    def _find_existing(
        self,
        view_id: str,
        change_id: int,
        user_id: str,
    ) -> Optional[ViewNotification]:
        return self.db.query(ViewNotification).filter(
            ViewNotification.view_id == view_id,
            ViewNotification.panel_change_id == change_id,
            ViewNotification.user_id == user_id,
        ).first()

    def _insert(
        self,
        notification: ViewNotification,
    ) -> Tuple[Optional[ViewNotification], bool]:
        """
        Insert under a savepoint.

        Returns:
            (notification, True) when inserted; (existing, False) when a
            concurrent notifier already created it; (None, False) when the
            View disappeared in the meantime.
        """
        try:
            with self.db.begin_nested():
                self.db.add(notification)
            return notification, True
        except IntegrityError:
            conflict = ConflictError(
                f"Duplicate notification for view {notification.view_id} "
                f"and change {notification.panel_change_id}"
            )
            logger.error(
                "Notification idempotency violation",
                extra={
                    "tenant_id": self.tenant_id,
                    "view_id": notification.view_id,
                    "change_id": notification.panel_change_id,
                    "user_id": notification.user_id,
                    "error": conflict.message,
                },
            )
            existing = self._find_existing(
                notification.view_id,
                notification.panel_change_id,
                notification.user_id,
            )
            if existing is None:
                logger.warning(
                    "Notification target vanished during delivery",
                    extra={"tenant_id": self.tenant_id, "view_id": notification.view_id},
                )
            return existing, False
