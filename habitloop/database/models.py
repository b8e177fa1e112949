"""
habitloop.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- challenges         — Joinable goals with a denormalised member count
- challenge_members  — (challenge, user) membership, unique together
- completions        — One proof-backed completion per user/challenge/day
- profiles           — Per-user point balance and lifetime redeemed currency
- chat_messages      — Append-only per-challenge chat, sequenced per challenge

User ids are opaque strings issued by the external auth provider.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

DEFAULT_CATEGORY = "general"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all HabitLoop ORM models."""


# ---------------------------------------------------------------------------
# Challenges: shared, joinable goals
# ---------------------------------------------------------------------------
class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DEFAULT_CATEGORY
    )
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Only ever changed by SQL increment/decrement in the membership transaction.
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Last chat sequence number handed out in this challenge.
    message_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    members: Mapped[list[Membership]] = relationship(back_populates="challenge")

    __table_args__ = (
        CheckConstraint("member_count >= 0", name="ck_challenges_member_count"),
        Index("ix_challenges_public_created", "is_public", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Challenge id={self.id} title={self.title!r} members={self.member_count}>"


# ---------------------------------------------------------------------------
# Memberships: who currently participates in which challenge
# ---------------------------------------------------------------------------
class Membership(Base):
    __tablename__ = "challenge_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    challenge: Mapped[Challenge] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_challenge_members_pair"),
        Index("ix_challenge_members_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Membership challenge={self.challenge_id} user={self.user_id}>"


# ---------------------------------------------------------------------------
# Completions: one proof per user per challenge per calendar day
# ---------------------------------------------------------------------------
class Completion(Base):
    __tablename__ = "completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    completed_on: Mapped[date] = mapped_column(Date, nullable=False)
    proof: Mapped[str] = mapped_column(Text, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    challenge: Mapped[Challenge] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "user_id", "challenge_id", "completed_on",
            name="uq_completions_user_challenge_day",
        ),
        Index("ix_completions_user_day", "user_id", "completed_on"),
    )

    def __repr__(self) -> str:
        return (
            f"<Completion id={self.id} user={self.user_id} "
            f"challenge={self.challenge_id} on={self.completed_on}>"
        )


# ---------------------------------------------------------------------------
# Profiles: point balance and lifetime redeemed currency
# ---------------------------------------------------------------------------
class Profile(Base):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_profiles_points_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_profiles_total_earned_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Profile user={self.user_id} points={self.points}>"


# ---------------------------------------------------------------------------
# ChatMessages: immutable, ordered per challenge by ``seq``
# ---------------------------------------------------------------------------
class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("challenge_id", "seq", name="uq_chat_messages_challenge_seq"),
    )

    def __repr__(self) -> str:
        return f"<ChatMessage id={self.id} challenge={self.challenge_id} seq={self.seq}>"
