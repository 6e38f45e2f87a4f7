"""
DataSource model - Where a Panel's base columns read their data from.

Data sources are kept as historical records when their Panel is deleted:
panel_id becomes NULL instead of the row being removed.
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship

from panels.db_base import Base
from panels.models.base import TimestampMixin, generate_uuid


class DataSourceType(str, PyEnum):
    """Kind of data source."""
    DATABASE = "database"
    API = "api"
    FILE = "file"
    CUSTOM = "custom"


class DataSource(Base, TimestampMixin):
    """Data source attached to a Panel."""

    __tablename__ = "data_sources"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)",
    )

    panel_id = Column(
        String(36),
        ForeignKey("panels.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Owning panel. SET NULL on panel delete, the source is kept.",
    )

    type = Column(String(20), nullable=False)

    config = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="Opaque connection configuration",
    )

    last_sync = Column(DateTime(timezone=True), nullable=True)

    panel = relationship("Panel", back_populates="data_sources")
    columns = relationship("BaseColumn", back_populates="data_source")

    def __repr__(self) -> str:
        return f"<DataSource(id={self.id}, panel_id={self.panel_id}, type={self.type})>"

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "config": self.config or {},
        }
