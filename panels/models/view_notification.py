"""
ViewNotification model - Delivery record of a Panel change to a View owner.

Mutable read model derived from the PanelChange ledger by the notifier.
Also used for notifications without a structural change (publish
announcements, manual alerts), in which case panel_change_id is NULL.

Lifecycle: pending -> acknowledged -> resolved, or pending -> resolved.
Nothing leaves resolved.

SECURITY:
- Tenant isolation via TenantScopedMixin (copied from the View)
- Only the addressed user may acknowledge or resolve
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import TimestampMixin, TenantScopedMixin
from panels.services.errors import InvalidTransitionError


class NotificationStatus(str, PyEnum):
    """Acknowledgment status of a notification."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class NotificationImpact(str, PyEnum):
    """Severity of a change for a View."""
    BREAKING = "breaking"
    WARNING = "warning"
    INFO = "info"


# Higher rank wins when several impacts apply
IMPACT_SEVERITY = {
    NotificationImpact.INFO: 0,
    NotificationImpact.WARNING: 1,
    NotificationImpact.BREAKING: 2,
}


def max_impact(*impacts: NotificationImpact) -> NotificationImpact:
    """Return the most severe impact: breaking > warning > info."""
    if not impacts:
        raise ValueError("max_impact requires at least one impact")
    return max(impacts, key=lambda impact: IMPACT_SEVERITY[NotificationImpact(impact)])


class ViewNotification(Base, TimestampMixin, TenantScopedMixin):
    """
    One delivery of a change (or manual alert) to a View stakeholder.

    At most one row exists per (view_id, panel_change_id, user_id). With
    the owner as sole recipient this is one row per (View, PanelChange)
    pair, and so at most one pending notification per pair.
    """

    __tablename__ = "view_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        String(255),
        nullable=False,
        comment="Recipient user",
    )

    view_id = Column(
        String(36),
        ForeignKey("views.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    panel_change_id = Column(
        Integer,
        ForeignKey("panel_changes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Triggering change. NULL for publish announcements and manual alerts.",
    )

    status = Column(
        String(20),
        nullable=False,
        default=NotificationStatus.PENDING.value,
        index=True,
    )

    impact = Column(String(20), nullable=False)

    message = Column(Text, nullable=False)

    acknowledged_at = Column(DateTime(timezone=True), nullable=True)

    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    view = relationship("View", back_populates="notifications")
    panel_change = relationship("PanelChange", back_populates="notifications")

    __table_args__ = (
        # Backs the notifier's check-then-insert. NULL panel_change_id
        # (manual alerts) never collides.
        UniqueConstraint(
            "view_id", "panel_change_id", "user_id",
            name="uq_view_notifications_view_change_user",
        ),
        Index("ix_view_notifications_tenant_user_status", "tenant_id", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ViewNotification(id={self.id}, view_id={self.view_id}, "
            f"panel_change_id={self.panel_change_id}, status={self.status})>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == NotificationStatus.PENDING.value

    @property
    def is_acknowledged(self) -> bool:
        return self.status == NotificationStatus.ACKNOWLEDGED.value

    @property
    def is_resolved(self) -> bool:
        return self.status == NotificationStatus.RESOLVED.value

    @property
    def is_read(self) -> bool:
        return not self.is_pending

    def acknowledge(self) -> bool:
        """
        Move pending -> acknowledged.

        acknowledged_at is set exactly once. Acknowledging an acknowledged
        notification is a no-op.

        Returns:
            True if the status changed

        Raises:
            InvalidTransitionError: notification is already resolved
        """
        if self.is_resolved:
            raise InvalidTransitionError(
                f"Notification {self.id} is resolved and cannot be acknowledged"
            )
        if self.is_acknowledged:
            return False
        self.status = NotificationStatus.ACKNOWLEDGED.value
        self.acknowledged_at = datetime.now(timezone.utc)
        return True

    def resolve(self) -> bool:
        """
        Move pending or acknowledged -> resolved.

        Returns:
            True if the status changed, False if it was already resolved
        """
        if self.is_resolved:
            return False
        self.status = NotificationStatus.RESOLVED.value
        self.resolved_at = datetime.now(timezone.utc)
        return True
