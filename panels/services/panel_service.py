"""
Panel service - Panel lifecycle (create, read, rename, delete).

Structural changes (columns, data sources, cohort rule) go through
PanelStructureService, which records them. Renaming a Panel or editing its
description is not structural and records nothing.

SECURITY: all queries are scoped to tenant_id; only the owner may update
or delete a Panel.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from panels.models.panel import Panel, cohort_rule_problems, empty_cohort_rule
from panels.services.change_feed_service import normalize_pagination
from panels.services.errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


class PanelService:
    """CRUD for Panels within a tenant."""

    def __init__(self, db: Session, tenant_id: str, user_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if not user_id:
            raise ValueError("user_id is required")
        self.db = db
        self.tenant_id = tenant_id
        self.user_id = user_id

    def create_panel(
        self,
        name: str,
        description: Optional[str] = None,
        cohort_rule: Optional[dict] = None,
    ) -> Panel:
        """
        Create a Panel owned by the caller.

        Raises:
            ValidationError: Empty name or malformed cohort rule
        """
        if not name or not name.strip():
            raise ValidationError("Panel name is required")

        if cohort_rule is None:
            cohort_rule = empty_cohort_rule()
        problems = cohort_rule_problems(cohort_rule)
        if problems:
            raise ValidationError("Invalid cohort rule: " + "; ".join(problems))

        panel = Panel(
            tenant_id=self.tenant_id,
            user_id=self.user_id,
            name=name.strip(),
            description=description,
            cohort_rule=cohort_rule,
        )
        self.db.add(panel)
        self.db.commit()

        logger.info(
            "Panel created",
            extra={"tenant_id": self.tenant_id, "panel_id": panel.id, "user_id": self.user_id},
        )
        return panel

    def get_panel(self, panel_id: str) -> Panel:
        """Get a Panel by id within the tenant."""
        panel = self.db.query(Panel).filter(
            Panel.id == panel_id,
            Panel.tenant_id == self.tenant_id,
        ).first()

        if not panel:
            raise NotFoundError(f"Panel {panel_id} not found")

        return panel

    def list_panels(
        self,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Panel], int]:
        """List the caller's Panels, most recently updated first."""
        limit, offset = normalize_pagination(limit, offset)

        query = self.db.query(Panel).filter(
            Panel.tenant_id == self.tenant_id,
            Panel.user_id == self.user_id,
        )

        total = query.count()
        panels = (
            query
            .order_by(Panel.updated_at.desc(), Panel.id)
            .offset(offset)
            .limit(limit)
            .all()
        )

        return panels, total

    def update_panel(
        self,
        panel_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Panel:
        """Rename a Panel or change its description. Owner only."""
        panel = self._get_owned(panel_id)

        if name is not None:
            if not name.strip():
                raise ValidationError("Panel name cannot be empty")
            panel.name = name.strip()
        if description is not None:
            panel.description = description

        self.db.commit()
        return panel

    def delete_panel(self, panel_id: str) -> None:
        """
        Delete a Panel with its columns and Views.

        Data sources and recorded changes are kept, detached from the Panel.
        """
        panel = self._get_owned(panel_id)

        self.db.delete(panel)
        self.db.commit()

        logger.info(
            "Panel deleted",
            extra={"tenant_id": self.tenant_id, "panel_id": panel_id, "user_id": self.user_id},
        )

    def _get_owned(self, panel_id: str) -> Panel:
        panel = self.get_panel(panel_id)
        if panel.user_id != self.user_id:
            raise NotFoundError("You do not have edit access to this panel")
        return panel
