"""baseline_schema

Revision ID: 4b7e1c9a2d30
Revises: 
Create Date: 2026-10-19 09:12:44.381102

"""
from typing import Sequence, Union

from alembic import op

from panels.db_base import Base
import panels.models  # noqa: F401 - required to register all model metadata


# revision identifiers, used by Alembic.
revision: str = '4b7e1c9a2d30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind)
