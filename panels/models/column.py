"""
Column models - Base and calculated columns of a Panel.

Base columns read a field from a DataSource. Calculated columns derive
their value from a formula over other columns of the same Panel.

Column ids are UUID strings drawn from one id space for both tables, so a
column identifier stored in a View is unambiguous regardless of which kind
of column it names.
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, String, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import generate_uuid


class ColumnType(str, PyEnum):
    """Value type of a column."""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    USER = "user"
    FILE = "file"
    CUSTOM = "custom"


class ColumnMixin:
    """Fields shared by base and calculated columns."""

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Column identifier (UUID), referenced by Views as an opaque string",
    )

    name = Column(String(255), nullable=False)

    type = Column(
        String(20),
        nullable=False,
        default=ColumnType.TEXT.value,
    )

    properties = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="required/unique/default/validation/display settings",
    )

    # "metadata" is reserved on declarative classes
    column_metadata = Column("metadata", JSON, nullable=True)

    def snapshot(self) -> dict:
        """Serializable state used as before/after payload in PanelChange."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "properties": self.properties or {},
            "metadata": self.column_metadata,
        }


class BaseColumn(Base, ColumnMixin):
    """Column backed by a field of a DataSource."""

    __tablename__ = "base_columns"

    panel_id = Column(
        String(36),
        ForeignKey("panels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    data_source_id = Column(
        String(36),
        ForeignKey("data_sources.id"),
        nullable=False,
        index=True,
    )

    source_field = Column(String(255), nullable=False)

    panel = relationship("Panel", back_populates="base_columns")
    data_source = relationship("DataSource", back_populates="columns")

    is_calculated = False

    def __repr__(self) -> str:
        return f"<BaseColumn(id={self.id}, panel_id={self.panel_id}, name={self.name})>"

    def snapshot(self) -> dict:
        data = super().snapshot()
        data.update({
            "kind": "base",
            "data_source_id": self.data_source_id,
            "source_field": self.source_field,
        })
        return data


class CalculatedColumn(Base, ColumnMixin):
    """Column computed from a formula over other columns of the Panel."""

    __tablename__ = "calculated_columns"

    panel_id = Column(
        String(36),
        ForeignKey("panels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    formula = Column(Text, nullable=False)

    dependencies = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Column ids referenced by the formula. Validated at write time, not a FK.",
    )

    panel = relationship("Panel", back_populates="calculated_columns")

    is_calculated = True

    def __repr__(self) -> str:
        return f"<CalculatedColumn(id={self.id}, panel_id={self.panel_id}, name={self.name})>"

    def snapshot(self) -> dict:
        data = super().snapshot()
        data.update({
            "kind": "calculated",
            "formula": self.formula,
            "dependencies": list(self.dependencies or []),
        })
        return data
