"""
Database models for panels, views and change tracking.

Tenant-scoped models inherit from TenantScopedMixin.
"""

from panels.models.base import TimestampMixin, TenantScopedMixin, CreatedAtMixin
from panels.models.panel import (
    Panel,
    CohortLogic,
    CohortOperator,
    cohort_rule_problems,
    empty_cohort_rule,
)
from panels.models.data_source import DataSource, DataSourceType
from panels.models.column import BaseColumn, CalculatedColumn, ColumnType
from panels.models.view import View, ViewFilter, ViewSort, FilterOperator, SortDirection
from panels.models.panel_change import PanelChange, ChangeType, COLUMN_CHANGE_TYPES
from panels.models.view_notification import (
    ViewNotification,
    NotificationStatus,
    NotificationImpact,
    IMPACT_SEVERITY,
    max_impact,
)

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "CreatedAtMixin",
    # Panel structure
    "Panel",
    "CohortLogic",
    "CohortOperator",
    "cohort_rule_problems",
    "empty_cohort_rule",
    "DataSource",
    "DataSourceType",
    "BaseColumn",
    "CalculatedColumn",
    "ColumnType",
    # Views
    "View",
    "ViewFilter",
    "ViewSort",
    "FilterOperator",
    "SortDirection",
    # Change tracking
    "PanelChange",
    "ChangeType",
    "COLUMN_CHANGE_TYPES",
    "ViewNotification",
    "NotificationStatus",
    "NotificationImpact",
    "IMPACT_SEVERITY",
    "max_impact",
]
