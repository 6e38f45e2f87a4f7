"""
View models - User-owned projections of a Panel.

visible_columns is a denormalized snapshot of column identifiers, not a
foreign key. A View keeps its definition when the Panel changes underneath
it; the change notification engine reports the drift instead.

Lifecycle: created unpublished -> published (publish action sets
published_at) -> optionally unpublished. Only published Views receive
change notifications.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Index, JSON,
)
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import TimestampMixin, TenantScopedMixin, generate_uuid


class FilterOperator(str, PyEnum):
    """Operators available to View filters."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN = "in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class SortDirection(str, PyEnum):
    """Sort direction for a View sort."""
    ASC = "asc"
    DESC = "desc"


class View(Base, TimestampMixin, TenantScopedMixin):
    """
    Named, user-owned projection of exactly one Panel.

    SECURITY: tenant_id from TenantScopedMixin ensures isolation.
    """

    __tablename__ = "views"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)",
    )

    panel_id = Column(
        String(36),
        ForeignKey("panels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    owner_user_id = Column(String(255), nullable=False)

    name = Column(String(255), nullable=False)

    visible_columns = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Ordered column identifiers. Snapshot, not a foreign key.",
    )

    is_published = Column(Boolean, nullable=False, default=False)

    published_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    panel = relationship("Panel", back_populates="views")

    filters = relationship(
        "ViewFilter",
        back_populates="view",
        cascade="all, delete-orphan",
        order_by="ViewFilter.id",
    )

    sorts = relationship(
        "ViewSort",
        back_populates="view",
        cascade="all, delete-orphan",
        order_by="ViewSort.position",
    )

    notifications = relationship(
        "ViewNotification",
        back_populates="view",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_views_tenant_owner", "tenant_id", "owner_user_id"),
        Index("ix_views_tenant_published", "tenant_id", "is_published"),
    )

    def __repr__(self) -> str:
        return (
            f"<View(id={self.id}, panel_id={self.panel_id}, "
            f"is_published={self.is_published})>"
        )

    @property
    def filter_column_ids(self) -> List[str]:
        return [f.column_id for f in self.filters]

    @property
    def sort_column_ids(self) -> List[str]:
        return [s.column_id for s in self.sorts]

    def publish(self) -> None:
        """Mark the View as published. Re-publishing keeps the first published_at."""
        if not self.is_published:
            self.is_published = True
            self.published_at = datetime.now(timezone.utc)

    def unpublish(self) -> None:
        self.is_published = False
        self.published_at = None


class ViewFilter(Base):
    """Filter condition of a View."""

    __tablename__ = "view_filters"

    id = Column(Integer, primary_key=True, autoincrement=True)

    view_id = Column(
        String(36),
        ForeignKey("views.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    column_id = Column(String(255), nullable=False)

    operator = Column(String(20), nullable=False)

    value = Column(JSON, nullable=True)

    view = relationship("View", back_populates="filters")

    def __repr__(self) -> str:
        return f"<ViewFilter(id={self.id}, view_id={self.view_id}, column_id={self.column_id})>"


class ViewSort(Base):
    """Sort key of a View. position orders multi-column sorts."""

    __tablename__ = "view_sorts"

    id = Column(Integer, primary_key=True, autoincrement=True)

    view_id = Column(
        String(36),
        ForeignKey("views.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    column_id = Column(String(255), nullable=False)

    direction = Column(String(4), nullable=False, default=SortDirection.ASC.value)

    position = Column(Integer, nullable=False, default=0)

    view = relationship("View", back_populates="sorts")

    def __repr__(self) -> str:
        return f"<ViewSort(id={self.id}, view_id={self.view_id}, column_id={self.column_id})>"
