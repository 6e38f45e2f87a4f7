"""
Panel model - Tenant-scoped cohort definition.

A Panel owns its columns (base and calculated) and its Views. Data sources
and the change history are attached to a Panel but survive its deletion as
historical records: their panel_id is set to NULL instead.

SECURITY:
- Tenant isolation via TenantScopedMixin
- Every lookup must filter on tenant_id
"""

from enum import Enum as PyEnum
from typing import Any, Dict, List

from sqlalchemy import Column, String, Text, Index, JSON
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import TimestampMixin, TenantScopedMixin, generate_uuid


class CohortLogic(str, PyEnum):
    """How cohort conditions are combined."""
    AND = "AND"
    OR = "OR"


class CohortOperator(str, PyEnum):
    """Operators allowed in a cohort condition."""
    EQ = "eq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    CONTAINS = "contains"
    IN = "in"
    BETWEEN = "between"


def empty_cohort_rule() -> Dict[str, Any]:
    """Cohort rule matching every patient."""
    return {"conditions": [], "logic": CohortLogic.AND.value}


def cohort_rule_problems(rule: Any) -> List[str]:
    """
    Return the list of problems with a cohort rule payload.

    An empty list means the rule is well formed:
        {"conditions": [{"field": str, "operator": str, "value": any}],
         "logic": "AND" | "OR"}
    """
    if not isinstance(rule, dict):
        return ["cohort rule must be an object"]

    problems = []
    logic = rule.get("logic")
    if logic not in {item.value for item in CohortLogic}:
        problems.append(f"invalid cohort logic '{logic}'")

    conditions = rule.get("conditions")
    if not isinstance(conditions, list):
        problems.append("cohort conditions must be a list")
        return problems

    operators = {item.value for item in CohortOperator}
    for index, condition in enumerate(conditions):
        if not isinstance(condition, dict):
            problems.append(f"condition {index} must be an object")
            continue
        if not condition.get("field"):
            problems.append(f"condition {index} is missing a field")
        if condition.get("operator") not in operators:
            problems.append(
                f"condition {index} has invalid operator '{condition.get('operator')}'"
            )
        if "value" not in condition:
            problems.append(f"condition {index} is missing a value")

    return problems


class Panel(Base, TimestampMixin, TenantScopedMixin):
    """
    Cohort-scoped tabular view over clinical data.

    SECURITY: tenant_id from TenantScopedMixin ensures isolation.
    """

    __tablename__ = "panels"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)",
    )

    user_id = Column(
        String(255),
        nullable=False,
        comment="Owner of the panel",
    )

    name = Column(String(255), nullable=False)

    description = Column(Text, nullable=True)

    cohort_rule = Column(
        JSON,
        nullable=False,
        default=empty_cohort_rule,
        comment="Cohort conditions and AND/OR logic",
    )

    # Relationships
    base_columns = relationship(
        "BaseColumn",
        back_populates="panel",
        cascade="all, delete-orphan",
    )

    calculated_columns = relationship(
        "CalculatedColumn",
        back_populates="panel",
        cascade="all, delete-orphan",
    )

    # No delete cascade: data sources outlive the panel with panel_id = NULL
    data_sources = relationship(
        "DataSource",
        back_populates="panel",
    )

    views = relationship(
        "View",
        back_populates="panel",
        cascade="all, delete-orphan",
    )

    # No delete cascade: the change ledger outlives the panel with panel_id = NULL
    changes = relationship(
        "PanelChange",
        back_populates="panel",
        order_by="PanelChange.id",
    )

    __table_args__ = (
        Index("ix_panels_tenant_user", "tenant_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Panel(id={self.id}, tenant_id={self.tenant_id}, name={self.name})>"

    @property
    def columns(self) -> list:
        """All columns of the panel, base columns first."""
        return list(self.base_columns) + list(self.calculated_columns)

    @property
    def column_ids(self) -> set:
        return {column.id for column in self.columns}

    def find_column(self, column_id: str):
        """Return the base or calculated column with this id, or None."""
        for column in self.columns:
            if column.id == column_id:
                return column
        return None
