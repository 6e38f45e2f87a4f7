"""
Panel Changes API - Change history of Panels.

Mounted at /changes/panels

The caller identifies itself with tenantId and userId; the calling layer
is responsible for authenticating them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query
from sqlalchemy.orm import Session

from panels.database.session import get_db_session
from panels.services.change_feed_service import ChangeFeedService
from panels.services.change_propagator import ChangePropagator
from panels.services.errors import NotFoundError, ValidationError
from panels.api.routes.view_notifications import notification_to_response
from panels.api.schemas.change_tracking import (
    ChangeListResponse,
    PanelChangeResponse,
    PropagateResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/changes/panels", tags=["panel-changes"])


def change_to_response(change) -> PanelChangeResponse:
    """Convert a PanelChange model to its API representation."""
    return PanelChangeResponse(
        id=change.id,
        panel_id=change.panel_id,
        panel_name=change.panel.name if change.panel is not None else None,
        change_type=change.change_type,
        affected_column=change.affected_column,
        description=change.description,
        before_state=change.before_state,
        after_state=change.after_state,
        changed_by=change.changed_by,
        created_at=change.created_at,
    )


@router.get("", response_model=ChangeListResponse)
async def list_panel_changes(
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    panel_id: Optional[str] = Query(None, alias="panelId"),
    change_type: Optional[str] = Query(None, alias="changeType"),
    since: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
    db: Session = Depends(get_db_session),
):
    """List changes of Panels the user owns or that have a published View."""
    service = ChangeFeedService(db, tenant_id)
    try:
        page = service.list_changes(
            user_id=user_id,
            panel_id=panel_id,
            change_type=change_type,
            since=since,
            limit=limit,
            offset=offset,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ChangeListResponse(
        changes=[change_to_response(c) for c in page.changes],
        total=page.total,
        has_more=page.has_more,
    )


@router.post("/{change_id}/propagate", response_model=PropagateResponse)
async def propagate_panel_change(
    change_id: int,
    tenant_id: str = Query(..., alias="tenantId", min_length=1),
    db: Session = Depends(get_db_session),
):
    """Re-run classification and notification for a recorded change."""
    try:
        notifications = ChangePropagator(db, tenant_id).propagate_by_id(change_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(
        "Panel change re-propagated",
        extra={"tenant_id": tenant_id, "change_id": change_id},
    )

    return PropagateResponse(
        change_id=change_id,
        notifications=[notification_to_response(n) for n in notifications],
    )
