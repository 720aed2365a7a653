from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from loyalty.db.models.base import Base, BigIntPK


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("points_pool >= 0", name="ck_events_points_pool_non_negative"),
        CheckConstraint("points_awarded >= 0", name="ck_events_points_awarded_non_negative"),
        CheckConstraint("points_awarded <= points_pool", name="ck_events_points_within_pool"),
        CheckConstraint("capacity IS NULL OR capacity > 0", name="ck_events_capacity_positive"),
        Index("idx_events_starts_at", "starts_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_pool: Mapped[int] = mapped_column(Integer, nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EventGuest(Base):
    __tablename__ = "event_guests"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),
        Index("idx_event_guests_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EventOrganizer(Base):
    __tablename__ = "event_organizers"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_organizers_event_user"),
        Index("idx_event_organizers_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("events.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
