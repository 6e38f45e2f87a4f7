"""
PanelChange model - Append-only ledger of structural Panel changes.

One row per structural mutation (column added/removed/modified, data source
changed, cohort rule changed), written in the same transaction as the
mutation it describes. Rows are never updated after insert, except that
deleting the Panel detaches them (panel_id = NULL).

The integer id is the canonical order key. created_at is informational
and may tie or skew between writers.
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, String, ForeignKey, Index, JSON, event, inspect
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import CreatedAtMixin, TenantScopedMixin


class ChangeType(str, PyEnum):
    """Kinds of structural Panel change."""
    COLUMN_ADDED = "column_added"
    COLUMN_REMOVED = "column_removed"
    COLUMN_MODIFIED = "column_modified"
    SOURCE_CHANGED = "source_changed"
    COHORT_CHANGED = "cohort_changed"


# Change types that name the column they touch
COLUMN_CHANGE_TYPES = frozenset({
    ChangeType.COLUMN_ADDED,
    ChangeType.COLUMN_REMOVED,
    ChangeType.COLUMN_MODIFIED,
})


class PanelChange(Base, CreatedAtMixin, TenantScopedMixin):
    """
    Immutable audit record of one structural Panel mutation.

    change_details layout:
    {
        "description": "Column \"Age\" removed",
        "before": {...} | null,
        "after": {...} | null
    }
    """

    __tablename__ = "panel_changes"

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Monotonic sequence, canonical ordering of changes",
    )

    panel_id = Column(
        String(36),
        ForeignKey("panels.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL once the Panel is deleted",
    )

    change_type = Column(String(30), nullable=False, index=True)

    affected_column = Column(
        String(255),
        nullable=True,
        comment="Column identifier for column_* changes, NULL otherwise",
    )

    change_details = Column(JSON, nullable=False, default=dict)

    changed_by = Column(
        String(255),
        nullable=True,
        comment="User who performed the mutation",
    )

    # Relationships
    panel = relationship("Panel", back_populates="changes")

    notifications = relationship(
        "ViewNotification",
        back_populates="panel_change",
    )

    __table_args__ = (
        Index("ix_panel_changes_tenant_panel", "tenant_id", "panel_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PanelChange(id={self.id}, panel_id={self.panel_id}, "
            f"change_type={self.change_type}, affected_column={self.affected_column})>"
        )

    @property
    def description(self) -> str:
        return (self.change_details or {}).get("description", "")

    @property
    def before_state(self):
        return (self.change_details or {}).get("before")

    @property
    def after_state(self):
        return (self.change_details or {}).get("after")


@event.listens_for(PanelChange, "before_update")
def _reject_panel_change_update(mapper, connection, target):
    # Collection changes (new notifications) also mark the row dirty
    state = inspect(target)
    changed = {
        attr.key for attr in mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    }
    if not changed:
        return
    # Deleting the Panel detaches its changes
    if changed == {"panel_id"} and target.panel_id is None:
        return
    raise ValueError(f"PanelChange {target.id} is immutable and cannot be updated")
