"""Add avatar_url to profiles

Revision ID: 8b4d0f3c6a12
Revises: 5e1c2a9b7d30
Create Date: 2026-10-19 15:40:03.517290

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '8b4d0f3c6a12'
down_revision: str | Sequence[str] | None = '5e1c2a9b7d30'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("profiles", sa.Column("avatar_url", sa.String(500), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("profiles") as batch_op:
        batch_op.drop_column("avatar_url")
