"""
View Notifications API - Listing and acknowledging View notifications.

Mounted at /notifications/views

Only the addressed user can acknowledge or resolve a notification.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session

from panels.database.session import get_db_session
from panels.services.change_feed_service import ChangeFeedService
from panels.services.notification_acknowledgment import NotificationAcknowledgmentService
from panels.services.errors import NotFoundError, ValidationError
from panels.api.schemas.change_tracking import (
    MarkReadRequest,
    MarkReadResponse,
    NotificationActionRequest,
    NotificationListResponse,
    ViewNotificationResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications/views", tags=["view-notifications"])


def notification_to_response(notification) -> ViewNotificationResponse:
    """Convert a ViewNotification model to its API representation."""
    return ViewNotificationResponse(
        id=notification.id,
        view_id=notification.view_id,
        view_name=notification.view.name if notification.view is not None else None,
        panel_change_id=notification.panel_change_id,
        status=notification.status,
        impact=notification.impact,
        message=notification.message,
        is_read=notification.is_read,
        acknowledged_at=notification.acknowledged_at,
        resolved_at=notification.resolved_at,
        created_at=notification.created_at,
    )


@router.get("", response_model=NotificationListResponse)
async def list_view_notifications(
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    impact: Optional[str] = Query(None),
    since: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    db: Session = Depends(get_db_session),
):
    """List the caller's notifications, newest first."""
    service = ChangeFeedService(db, tenant_id)
    try:
        page = service.list_notifications(
            user_id=user_id,
            is_read=is_read,
            impact=impact,
            since=since,
            limit=limit,
            offset=offset,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return NotificationListResponse(
        notifications=[notification_to_response(n) for n in page.notifications],
        total=page.total,
        unread_count=page.unread_count,
        has_more=page.has_more,
    )


@router.put("/mark-read", response_model=MarkReadResponse)
async def mark_notifications_read(
    body: MarkReadRequest,
    db: Session = Depends(get_db_session),
):
    """Acknowledge the caller's pending notifications among the given ids."""
    service = NotificationAcknowledgmentService(db, body.tenant_id)
    updated = service.mark_read(body.notification_ids, body.user_id)
    return MarkReadResponse(updated=updated)


@router.post("/{notification_id}/acknowledge", response_model=ViewNotificationResponse)
async def acknowledge_notification(
    notification_id: int,
    body: NotificationActionRequest,
    db: Session = Depends(get_db_session),
):
    """Acknowledge one notification."""
    service = NotificationAcknowledgmentService(db, body.tenant_id)
    try:
        notification = service.acknowledge(notification_id, body.user_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return notification_to_response(notification)


@router.post("/{notification_id}/resolve", response_model=ViewNotificationResponse)
async def resolve_notification(
    notification_id: int,
    body: NotificationActionRequest,
    db: Session = Depends(get_db_session),
):
    """Resolve one notification."""
    service = NotificationAcknowledgmentService(db, body.tenant_id)
    try:
        notification = service.resolve(notification_id, body.user_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")

    return notification_to_response(notification)
