"""Initial participation & rewards schema

Revision ID: 5e1c2a9b7d30
Revises:
Create Date: 2026-10-19 10:12:41.208114

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e1c2a9b7d30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create challenges, memberships, completions, profiles and chat."""

    # --- challenges ---
    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("creator_id", sa.String(64), nullable=False),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("member_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("message_seq", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("member_count >= 0", name="ck_challenges_member_count"),
    )
    op.create_index(
        "ix_challenges_public_created", "challenges", ["is_public", "created_at"],
    )

    # --- challenge_members ---
    op.create_table(
        "challenge_members",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "challenge_id",
            sa.Integer,
            sa.ForeignKey("challenges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("challenge_id", "user_id", name="uq_challenge_members_pair"),
    )
    op.create_index("ix_challenge_members_user", "challenge_members", ["user_id"])

    # --- completions ---
    op.create_table(
        "completions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "challenge_id",
            sa.Integer,
            sa.ForeignKey("challenges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("completed_on", sa.Date, nullable=False),
        sa.Column("proof", sa.Text, nullable=False),
        sa.Column("points_earned", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "user_id", "challenge_id", "completed_on",
            name="uq_completions_user_challenge_day",
        ),
    )
    op.create_index("ix_completions_user_day", "completions", ["user_id", "completed_on"])

    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("points >= 0", name="ck_profiles_points_non_negative"),
        sa.CheckConstraint("total_earned >= 0", name="ck_profiles_total_earned_non_negative"),
    )

    # --- chat_messages ---
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "challenge_id",
            sa.Integer,
            sa.ForeignKey("challenges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("challenge_id", "seq", name="uq_chat_messages_challenge_seq"),
    )


def downgrade() -> None:
    op.drop_table("chat_messages")
    op.drop_table("profiles")
    op.drop_index("ix_completions_user_day", table_name="completions")
    op.drop_table("completions")
    op.drop_index("ix_challenge_members_user", table_name="challenge_members")
    op.drop_table("challenge_members")
    op.drop_index("ix_challenges_public_created", table_name="challenges")
    op.drop_table("challenges")
