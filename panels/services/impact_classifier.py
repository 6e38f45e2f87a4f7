"""
Impact classifier for Panel changes.

Decides, for every published View of the changed Panel, how severe the
change is for that View:

- column_removed / column_modified on a column the View references
  (visible columns, filters or sorts): breaking
- column_modified on an unreferenced column: info
- column_removed on an unreferenced column: info
- column_added: info
- source_changed: warning (data shape/freshness may shift)
- cohort_changed: warning (population membership may shift)

When several rules apply the most severe one wins (breaking > warning > info).

classify_impact() is a pure function over ViewDefinition snapshots, so the
same change and View set always produce the same result. ImpactClassifier
loads the snapshots from the database.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from panels.models.panel_change import PanelChange, ChangeType
from panels.models.view import View
from panels.models.view_notification import NotificationImpact, max_impact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewDefinition:
    """Snapshot of the parts of a View that matter for classification."""

    view_id: str
    tenant_id: str
    owner_user_id: str
    name: str
    visible_columns: Tuple[str, ...]
    filter_column_ids: Tuple[str, ...] = ()
    sort_column_ids: Tuple[str, ...] = ()

    @classmethod
    def from_view(cls, view: View) -> "ViewDefinition":
        return cls(
            view_id=view.id,
            tenant_id=view.tenant_id,
            owner_user_id=view.owner_user_id,
            name=view.name,
            visible_columns=tuple(view.visible_columns or ()),
            filter_column_ids=tuple(view.filter_column_ids),
            sort_column_ids=tuple(view.sort_column_ids),
        )

    @property
    def referenced_columns(self) -> frozenset:
        """Union of visible, filter and sort column ids."""
        return frozenset(self.visible_columns) | frozenset(self.filter_column_ids) | frozenset(
            self.sort_column_ids
        )

    def references_of(self, column_id: Optional[str]) -> Tuple[str, ...]:
        """Which parts of the View use column_id: 'visible', 'filter', 'sort'."""
        if not column_id:
            return ()
        parts = []
        if column_id in self.visible_columns:
            parts.append("visible")
        if column_id in self.filter_column_ids:
            parts.append("filter")
        if column_id in self.sort_column_ids:
            parts.append("sort")
        return tuple(parts)


@dataclass(frozen=True)
class ChangeSnapshot:
    """The parts of a PanelChange that matter for classification."""

    change_id: Optional[int]
    panel_id: str
    change_type: ChangeType
    affected_column: Optional[str] = None

    @classmethod
    def from_change(cls, change: PanelChange) -> "ChangeSnapshot":
        return cls(
            change_id=change.id,
            panel_id=change.panel_id,
            change_type=ChangeType(change.change_type),
            affected_column=change.affected_column,
        )


@dataclass(frozen=True)
class ClassifiedView:
    """Impact of one change on one View."""

    view: ViewDefinition
    impact: NotificationImpact
    references: Tuple[str, ...] = ()

    @property
    def view_id(self) -> str:
        return self.view.view_id


def _candidate_impacts(
    change: ChangeSnapshot,
    view: ViewDefinition,
) -> List[NotificationImpact]:
    """Every impact any rule assigns to this (change, View) pair."""
    referenced = change.affected_column in view.referenced_columns
    candidates = []

    if change.change_type in (ChangeType.COLUMN_REMOVED, ChangeType.COLUMN_MODIFIED):
        if referenced:
            candidates.append(NotificationImpact.BREAKING)
        else:
            candidates.append(NotificationImpact.INFO)
    elif change.change_type == ChangeType.COLUMN_ADDED:
        candidates.append(NotificationImpact.INFO)
    elif change.change_type in (ChangeType.SOURCE_CHANGED, ChangeType.COHORT_CHANGED):
        candidates.append(NotificationImpact.WARNING)

    return candidates


def classify_view(change: ChangeSnapshot, view: ViewDefinition) -> ClassifiedView:
    """Classify a single View against a change."""
    impact = max_impact(*_candidate_impacts(change, view))
    return ClassifiedView(
        view=view,
        impact=NotificationImpact(impact),
        references=view.references_of(change.affected_column),
    )


def classify_impact(
    change: ChangeSnapshot,
    views: Iterable[ViewDefinition],
) -> List[ClassifiedView]:
    """
    Classify a change against a set of published Views.

    Args:
        change: The change being classified
        views: Published View snapshots of the changed Panel

    Returns:
        One ClassifiedView per View, ordered by view id. Empty when the
        Panel has no published Views.
    """
    return [
        classify_view(change, view)
        for view in sorted(views, key=lambda v: v.view_id)
    ]


class ImpactClassifier:
    """Loads the published Views of a change's Panel and classifies them."""

    def __init__(self, db_session: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id

    def published_views(self, panel_id: str) -> List[ViewDefinition]:
        """Snapshots of the published Views of a Panel within the tenant."""
        views = (
            self.db.query(View)
            .options(selectinload(View.filters), selectinload(View.sorts))
            .filter(
                View.panel_id == panel_id,
                View.tenant_id == self.tenant_id,
                View.is_published.is_(True),
            )
            .order_by(View.id)
            .all()
        )
        return [ViewDefinition.from_view(view) for view in views]

    def classify(self, change: PanelChange) -> List[ClassifiedView]:
        """
        Classify a recorded PanelChange against its Panel's published Views.

        Views published after this query runs are not included; they start
        with no historical notifications.
        """
        snapshot = ChangeSnapshot.from_change(change)
        classified = classify_impact(snapshot, self.published_views(change.panel_id))

        logger.info(
            "Panel change classified",
            extra={
                "tenant_id": self.tenant_id,
                "change_id": change.id,
                "change_type": snapshot.change_type.value,
                "views": len(classified),
                "breaking": sum(
                    1 for c in classified if c.impact == NotificationImpact.BREAKING
                ),
            },
        )

        return classified
