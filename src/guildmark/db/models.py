"""ORM models for the guild record store.

Tables are created by the Alembic migrations under ``alembic/versions``.
Enumerated columns are stored as plain strings and parsed into the domain
enums by the store adapter.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from guildmark.db.base import Base


# ---------------------------------------------------------------------------
# Users and relationships
# ---------------------------------------------------------------------------


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)  # apprentice | mentor | host | admin
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MentorApprentice(Base):
    """Mentor ↔ apprentice relationship rows."""

    __tablename__ = "mentor_apprentices"
    __table_args__ = (UniqueConstraint("mentor_id", "apprentice_id", name="mentor_apprentices_pair_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mentor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    apprentice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class ActivityEntry(Base):
    __tablename__ = "activity_entries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str | None] = mapped_column(String(16), nullable=True)
    hours: Mapped[float] = mapped_column(Numeric(6, 1), nullable=False, default=0)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mentor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mentor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class HourLimit(Base):
    """Hour caps. ``user_id`` NULL is the global singleton row."""

    __tablename__ = "hour_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, unique=True
    )
    max_work_per_day: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_study_per_day: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_work_per_week: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_study_per_week: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_work_per_month: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_study_per_month: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_work_per_year: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    max_study_per_year: Mapped[float] = mapped_column(Numeric(7, 1), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementTemplate(Base):
    __tablename__ = "achievement_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="badge")
    scope: Mapped[str] = mapped_column(String(16), nullable=False, default="global")
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rule_combinator: Mapped[str] = mapped_column(String(3), nullable=False, default="and")
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UnlockRule(Base):
    __tablename__ = "unlock_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievement_templates.id", ondelete="CASCADE"), nullable=False
    )
    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[float | None] = mapped_column(Numeric(10, 1), nullable=True)


class AchievementRecord(Base):
    """Persisted unlock state — UNIQUE(user_id, template_id, mentor_id)."""

    __tablename__ = "achievement_records"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "template_id", "mentor_id",
            name="achievement_records_scope_key",
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievement_templates.id", ondelete="CASCADE"), nullable=False
    )
    mentor_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    granted_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )


class UnlockHistory(Base):
    """Latest unlock attribution per (user, template); replaced on every re-unlock."""

    __tablename__ = "unlock_history"
    __table_args__ = (UniqueConstraint("user_id", "template_id", name="unlock_history_pair_key"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievement_templates.id", ondelete="CASCADE"), nullable=False
    )
    unlocked_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("unlock_rules.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
