"""
Change Recorder - Appends PanelChange records for structural mutations.

record_change() joins the caller's transaction: it adds and flushes the
PanelChange but never commits. The structural mutation and its audit
record therefore commit (or roll back) together, so no committed mutation
is ever missing its change record.

SECURITY: tenant_id is supplied by the calling layer; the Panel must
belong to that tenant.
"""

import logging
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from panels.models.panel import Panel
from panels.models.panel_change import PanelChange, ChangeType, COLUMN_CHANGE_TYPES
from panels.services.errors import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


DEFAULT_DESCRIPTIONS = {
    ChangeType.COLUMN_ADDED: "Column {column} added",
    ChangeType.COLUMN_REMOVED: "Column {column} removed",
    ChangeType.COLUMN_MODIFIED: "Column {column} modified",
    ChangeType.SOURCE_CHANGED: "Data source changed",
    ChangeType.COHORT_CHANGED: "Cohort rule changed",
}


def parse_change_type(change_type: Union[ChangeType, str]) -> ChangeType:
    """Coerce a change type value, raising ValidationError for unknown kinds."""
    try:
        return ChangeType(change_type)
    except ValueError:
        allowed = ", ".join(item.value for item in ChangeType)
        raise ValidationError(
            f"Invalid change type '{change_type}'. Must be one of: {allowed}"
        )


def validate_change(change_type: ChangeType, affected_column: Optional[str]) -> None:
    """
    Check the change_type / affected_column combination.

    column_* changes must name their column; source and cohort changes
    must not.
    """
    if change_type in COLUMN_CHANGE_TYPES:
        if not affected_column:
            raise ValidationError(
                f"affected_column is required for {change_type.value} changes"
            )
    elif affected_column:
        raise ValidationError(
            f"affected_column must be omitted for {change_type.value} changes"
        )


class ChangeRecorder:
    """Writes immutable PanelChange rows inside the caller's transaction."""

    def __init__(self, db_session: Session, tenant_id: str, user_id: Optional[str] = None):
        """
        Initialize change recorder.

        Args:
            db_session: Database session (transaction owned by the caller)
            tenant_id: Tenant identifier
            user_id: User performing the mutation, stored as changed_by
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id
        self.user_id = user_id

    def record_change(
        self,
        panel_id: str,
        change_type: Union[ChangeType, str],
        affected_column: Optional[str] = None,
        before_state: Any = None,
        after_state: Any = None,
        description: Optional[str] = None,
    ) -> PanelChange:
        """
        Append one PanelChange for a structural mutation.

        Args:
            panel_id: Panel that changed
            change_type: One of the ChangeType kinds
            affected_column: Column id for column_* changes, None otherwise
            before_state: JSON-serializable state before the mutation
            after_state: JSON-serializable state after the mutation
            description: Human-readable summary (generated when omitted)

        Returns:
            The flushed (uncommitted) PanelChange

        Raises:
            ValidationError: Unknown change type or inconsistent affected_column
            NotFoundError: Panel absent or outside the tenant
        """
        kind = parse_change_type(change_type)
        validate_change(kind, affected_column)

        panel = self.db.query(Panel).filter(
            Panel.id == panel_id,
            Panel.tenant_id == self.tenant_id,
        ).first()

        if not panel:
            raise NotFoundError(f"Panel {panel_id} not found")

        if description is None:
            description = DEFAULT_DESCRIPTIONS[kind].format(column=affected_column)

        change = PanelChange(
            tenant_id=self.tenant_id,
            panel_id=panel.id,
            change_type=kind.value,
            affected_column=affected_column,
            changed_by=self.user_id,
            change_details={
                "description": description,
                "before": before_state,
                "after": after_state,
            },
        )

        self.db.add(change)
        self.db.flush()

        logger.info(
            "Panel change recorded",
            extra={
                "tenant_id": self.tenant_id,
                "panel_id": panel.id,
                "change_id": change.id,
                "change_type": kind.value,
                "affected_column": affected_column,
            },
        )

        return change
