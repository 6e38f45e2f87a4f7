"""
View service - View lifecycle and definition.

A View is created unpublished by its owner. Publishing (owner only) makes
it a target of change notifications from then on and, when
notifications.announce_publish is enabled, creates an info notification
announcing the publication.

visible_columns holds opaque column identifiers. They are not checked
against the Panel's current columns; drift is reported by notifications.

SECURITY: queries are scoped to tenant_id. Unpublished Views are only
visible to their owner.
"""

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy.orm import Session

from panels.config.change_tracking import get_change_tracking_config
from panels.models.panel import Panel
from panels.models.view import View, ViewFilter, ViewSort, FilterOperator, SortDirection
from panels.services.errors import NotFoundError, ValidationError
from panels.services.view_notifier import ViewNotifier


logger = logging.getLogger(__name__)


def _column_ids(columns: Optional[Iterable[str]]) -> List[str]:
    ids = list(columns or [])
    if any(not isinstance(c, str) or not c for c in ids):
        raise ValidationError("visible_columns must be non-empty column identifiers")
    return ids


class ViewService:
    """CRUD and publication for Views."""

    def __init__(self, db: Session, tenant_id: str, user_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not user_id:
            raise ValueError("user_id is required")
        self.db = db
        self.tenant_id = tenant_id
        self.user_id = user_id

    def create_view(
        self,
        panel_id: str,
        name: str,
        visible_columns: Optional[Iterable[str]] = None,
    ) -> View:
        """
        Create an unpublished View of a Panel, owned by the caller.

        Raises:
            NotFoundError: Panel not in the tenant
            ValidationError: Empty name or column identifier
        """
        panel = self.db.query(Panel).filter(
            Panel.id == panel_id,
            Panel.tenant_id == self.tenant_id,
        ).first()
        if not panel:
            raise NotFoundError(f"Panel {panel_id} not found")

        if not name or not name.strip():
            raise ValidationError("View name is required")

        view = View(
            tenant_id=self.tenant_id,
            panel_id=panel.id,
            owner_user_id=self.user_id,
            name=name.strip(),
            visible_columns=_column_ids(visible_columns),
            is_published=False,
        )
        self.db.add(view)
        self.db.commit()

        logger.info(
            "View created",
            extra={"tenant_id": self.tenant_id, "panel_id": panel.id, "view_id": view.id},
        )
        return view

    def get_view(self, view_id: str) -> View:
        """Get a View the caller owns, or a published View of the tenant."""
        view = self.db.query(View).filter(
            View.id == view_id,
            View.tenant_id == self.tenant_id,
        ).first()

        if not view or (not view.is_published and view.owner_user_id != self.user_id):
            raise NotFoundError(f"View {view_id} not found")

        return view

    def update_view(
        self,
        view_id: str,
        name: Optional[str] = None,
        visible_columns: Optional[Iterable[str]] = None,
    ) -> View:
        """Rename a View or replace its visible columns. Owner only."""
        view = self._get_owned(view_id)

        if name is not None:
            if not name.strip():
                raise ValidationError("View name cannot be empty")
            view.name = name.strip()
        if visible_columns is not None:
            view.visible_columns = _column_ids(visible_columns)

        self.db.commit()
        return view

    def add_filter(
        self,
        view_id: str,
        column_id: str,
        operator: str,
        value: Any = None,
    ) -> ViewFilter:
        """Add a filter on column_id. Owner only."""
        view = self._get_owned(view_id)
        if not column_id:
            raise ValidationError("column_id is required")
        try:
            operator = FilterOperator(operator).value
        except ValueError:
            raise ValidationError(f"Invalid filter operator '{operator}'")

        view_filter = ViewFilter(column_id=column_id, operator=operator, value=value)
        view.filters.append(view_filter)
        self.db.commit()
        return view_filter

    def add_sort(
        self,
        view_id: str,
        column_id: str,
        direction: str = SortDirection.ASC.value,
        position: Optional[int] = None,
    ) -> ViewSort:
        """Add a sort key on column_id, last by default. Owner only."""
        view = self._get_owned(view_id)
        if not column_id:
            raise ValidationError("column_id is required")
        try:
            direction = SortDirection(direction).value
        except ValueError:
            raise ValidationError(f"Invalid sort direction '{direction}'")

        if position is None:
            position = len(view.sorts)

        view_sort = ViewSort(column_id=column_id, direction=direction, position=position)
        view.sorts.append(view_sort)
        self.db.commit()
        return view_sort

    def publish_view(self, view_id: str) -> View:
        """
        Publish a View. Owner only.

        Publishing an already published View changes nothing and announces
        nothing.
        """
        view = self._get_owned(view_id)

        if view.is_published:
            return view

        view.publish()
        self.db.commit()

        logger.info(
            "View published",
            extra={"tenant_id": self.tenant_id, "view_id": view.id, "panel_id": view.panel_id},
        )

        if get_change_tracking_config().announce_publish:
            ViewNotifier(self.db, self.tenant_id).notify_view_published(view)
            self.db.commit()

        return view

    def unpublish_view(self, view_id: str) -> View:
        """Withdraw a View from change notifications. Owner only."""
        view = self._get_owned(view_id)
        if view.is_published:
            view.unpublish()
            self.db.commit()
            logger.info(
                "View unpublished",
                extra={"tenant_id": self.tenant_id, "view_id": view.id},
            )
        return view

    def delete_view(self, view_id: str) -> None:
        """Delete a View with its filters, sorts and notifications. Owner only."""
        view = self._get_owned(view_id)

        self.db.delete(view)
        self.db.commit()

        logger.info(
            "View deleted",
            extra={"tenant_id": self.tenant_id, "view_id": view_id},
        )

    def _get_owned(self, view_id: str) -> View:
        view = self.get_view(view_id)
        if view.owner_user_id != self.user_id:
            raise NotFoundError("Only the owner can modify a view")
        return view
