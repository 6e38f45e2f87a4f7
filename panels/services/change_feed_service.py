"""
Change feed service - Read side of change tracking.

listChanges: PanelChanges visible to a user (own Panels, or Panels with a
published View in the tenant), newest first.

listNotifications: a user's ViewNotifications with unread count, newest
first.

Pagination is offset based. limit is clamped into [1, max_limit]; a
negative offset is rejected.

SECURITY: every query is filtered on the service's tenant_id.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, joinedload

from panels.config.change_tracking import get_change_tracking_config
from panels.models.panel import Panel
from panels.models.panel_change import PanelChange, ChangeType
from panels.models.view import View
from panels.models.view_notification import (
    ViewNotification,
    NotificationImpact,
    NotificationStatus,
)
from panels.services.change_recorder import parse_change_type
from panels.services.errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class ChangePage:
    """One page of PanelChanges."""

    changes: List[PanelChange]
    total: int
    has_more: bool


@dataclass
class NotificationPage:
    """One page of ViewNotifications plus the caller's unread count."""

    notifications: List[ViewNotification]
    total: int
    unread_count: int
    has_more: bool


def normalize_pagination(
    limit: Optional[int],
    offset: Optional[int],
) -> Tuple[int, int]:
    """
    Clamp limit into [1, max_limit] and validate offset.

    Raises:
        ValidationError: offset is negative
    """
    config = get_change_tracking_config()

    offset = 0 if offset is None else int(offset)
    if offset < 0:
        raise ValidationError(f"offset must be >= 0, got {offset}")

    limit = config.default_limit if limit is None else int(limit)
    limit = max(1, min(limit, config.max_limit))

    return limit, offset


def parse_since(since: Union[datetime, str, None]) -> Optional[datetime]:
    """
    Parse a since filter into an aware UTC datetime.

    Naive values are taken as UTC.

    Raises:
        ValidationError: string is not ISO-8601
    """
    if since is None or since == "":
        return None

    if isinstance(since, str):
        try:
            since = datetime.fromisoformat(since.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid since timestamp '{since}'. Use ISO-8601.")

    if since.tzinfo is None:
        return since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc)


class ChangeFeedService:
    """Lists PanelChanges and ViewNotifications for a user."""

    def __init__(self, db_session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id

    def list_changes(
        self,
        user_id: str,
        panel_id: Optional[str] = None,
        change_type: Union[ChangeType, str, None] = None,
        since: Union[datetime, str, None] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = 0,
    ) -> ChangePage:
        """
        List PanelChanges visible to user_id.

        Visible: changes of Panels the user owns in the tenant, or of Panels
        with at least one published View in the tenant.

        Raises:
            NotFoundError: panel_id given but not in the tenant
            ValidationError: bad change_type, since or offset
        """
        limit, offset = normalize_pagination(limit, offset)
        since_at = parse_since(since)

        published_panel_ids = select(View.panel_id).where(
            View.tenant_id == self.tenant_id,
            View.is_published.is_(True),
        )

        query = (
            self.db.query(PanelChange)
            .join(Panel, Panel.id == PanelChange.panel_id)
            .filter(
                PanelChange.tenant_id == self.tenant_id,
                Panel.tenant_id == self.tenant_id,
                or_(
                    Panel.user_id == user_id,
                    Panel.id.in_(published_panel_ids),
                ),
            )
        )

        if panel_id:
            exists = self.db.query(Panel.id).filter(
                Panel.id == panel_id,
                Panel.tenant_id == self.tenant_id,
            ).first()
            if not exists:
                raise NotFoundError(f"Panel {panel_id} not found")
            query = query.filter(PanelChange.panel_id == panel_id)

        if change_type:
            query = query.filter(
                PanelChange.change_type == parse_change_type(change_type).value
            )

        if since_at is not None:
            query = query.filter(PanelChange.created_at >= since_at)

        total = query.count()
        changes = (
            query
            .options(joinedload(PanelChange.panel))
            .order_by(PanelChange.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        return ChangePage(
            changes=changes,
            total=total,
            has_more=total > offset + limit,
        )

    def list_notifications(
        self,
        user_id: str,
        is_read: Optional[bool] = None,
        impact: Union[NotificationImpact, str, None] = None,
        since: Union[datetime, str, None] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = 0,
    ) -> NotificationPage:
        """
        List notifications addressed to user_id.

        Args:
            is_read: False -> pending only; True -> acknowledged or resolved
            impact: Filter by severity
            since: Only notifications created at or after this time

        Raises:
            ValidationError: bad impact, since or offset
        """
        limit, offset = normalize_pagination(limit, offset)
        since_at = parse_since(since)

        base = self.db.query(ViewNotification).filter(
            ViewNotification.tenant_id == self.tenant_id,
            ViewNotification.user_id == user_id,
        )

        query = base
        if is_read is not None:
            if is_read:
                query = query.filter(
                    ViewNotification.status != NotificationStatus.PENDING.value
                )
            else:
                query = query.filter(
                    ViewNotification.status == NotificationStatus.PENDING.value
                )

        if impact:
            try:
                impact_value = NotificationImpact(impact).value
            except ValueError:
                raise ValidationError(f"Invalid impact '{impact}'")
            query = query.filter(ViewNotification.impact == impact_value)

        if since_at is not None:
            query = query.filter(ViewNotification.created_at >= since_at)

        total = query.count()
        notifications = (
            query
            .options(joinedload(ViewNotification.view))
            .order_by(ViewNotification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        unread_count = base.filter(
            ViewNotification.status == NotificationStatus.PENDING.value
        ).count()

        return NotificationPage(
            notifications=notifications,
            total=total,
            unread_count=unread_count,
            has_more=total > offset + limit,
        )
