"""
Base mixins for database models.

Provides common functionality:
- TimestampMixin: created_at, updated_at timestamps
- CreatedAtMixin: created_at only, for append-only records
- TenantScopedMixin: tenant_id for multi-tenant isolation
- generate_uuid: UUID generation for primary keys
"""

import uuid

from sqlalchemy import Column, String, DateTime, func
from sqlalchemy.orm import declared_attr


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


class CreatedAtMixin:
    """Mixin that adds a created_at column for records that never change."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )


class TimestampMixin(CreatedAtMixin):
    """Mixin that adds created_at and updated_at timestamp columns."""

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )


class TenantScopedMixin:
    """
    Mixin that adds tenant_id column for multi-tenant isolation.

    SECURITY: every query against a tenant-scoped table must filter on
    tenant_id. The value is supplied by the calling layer, never inferred.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            nullable=False,
            index=True,
            comment="Tenant identifier supplied by the calling layer"
        )
