"""
Pydantic schemas for the change tracking API.

Field names are snake_case in Python and camelCase on the wire
(tenantId, hasMore, unreadCount).
"""

from typing import Any, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# Panel changes
# =============================================================================

class PanelChangeResponse(CamelModel):
    """One recorded structural change of a Panel."""

    id: int
    panel_id: Optional[str] = None
    panel_name: Optional[str] = None
    change_type: str
    affected_column: Optional[str] = None
    description: str = ""
    before_state: Optional[Any] = None
    after_state: Optional[Any] = None
    changed_by: Optional[str] = None
    created_at: Optional[datetime] = None


class ChangeListResponse(CamelModel):
    """Paginated list of Panel changes, newest first."""

    changes: List[PanelChangeResponse]
    total: int
    has_more: bool


class PropagateResponse(CamelModel):
    """Result of re-running the notification pass for a change."""

    change_id: int
    notifications: List["ViewNotificationResponse"]


# =============================================================================
# View notifications
# =============================================================================

class ViewNotificationResponse(CamelModel):
    """Notification of a change (or manual alert) for a View."""

    id: int
    view_id: str
    view_name: Optional[str] = None
    panel_change_id: Optional[int] = None
    status: str
    impact: str
    message: str
    is_read: bool
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationListResponse(CamelModel):
    """Paginated notifications with the caller's unread count."""

    notifications: List[ViewNotificationResponse]
    total: int
    unread_count: int
    has_more: bool


class MarkReadRequest(CamelModel):
    """Acknowledge a batch of notifications."""

    notification_ids: List[int] = Field(..., max_length=500)
    tenant_id: str = Field(..., min_length=1, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("notification_ids")
    @classmethod
    def ids_must_be_positive(cls, v: List[int]) -> List[int]:
        if any(i <= 0 for i in v):
            raise ValueError("notificationIds must be positive integers")
        return v


class MarkReadResponse(CamelModel):
    """Number of notifications moved from pending to acknowledged."""

    updated: int


class NotificationActionRequest(CamelModel):
    """Caller identity for single-notification transitions."""

    tenant_id: str = Field(..., min_length=1, max_length=255)
    user_id: str = Field(..., min_length=1, max_length=255)


PropagateResponse.model_rebuild()
