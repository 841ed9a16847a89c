from sqlalchemy import Column, Integer, Boolean, CheckConstraint, DateTime, ForeignKey, Text, String, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import uuid


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Child(Base):
    __tablename__ = "child"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    name = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    events = relationship("BehaviorEvent", back_populates="child", cascade="all, delete-orphan")
    goals = relationship("Goal", back_populates="child", cascade="all, delete-orphan")


class BehaviorEvent(Base):
    """A logged moment for a child. Positive wins and challenges share one table."""
    __tablename__ = "behavior_event"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    child_id = Column(String(36), ForeignKey("child.id"), nullable=False, index=True)
    category_id = Column(Text, nullable=False)
    category_name = Column(Text, nullable=True)
    polarity = Column(Text, nullable=False)  # 'positive' | 'challenge'
    points = Column(Integer, default=0, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    child = relationship("Child", back_populates="events")

    __table_args__ = (
        CheckConstraint("polarity IN ('positive', 'challenge')", name="ck_behavior_event_polarity"),
        Index("ix_behavior_event_child_occurred", "child_id", "occurred_at"),
    )


class Goal(Base):
    """A points target a child is working toward (a reward in the parent app)."""
    __tablename__ = "goal"

    id = Column(String(36), primary_key=True, default=_uuid_str)
    child_id = Column(String(36), ForeignKey("child.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    target_points = Column(Integer, nullable=False)
    current_points = Column(Integer, default=0, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    is_redeemed = Column(Boolean, default=False, nullable=False)
    is_expired = Column(Boolean, default=False, nullable=False)

    child = relationship("Child", back_populates="goals")


class CoachCooldown(Base):
    """
    Last time a coach card of a given signal type was surfaced for a child.

    One row per (child, signal type); rows are overwritten, never duplicated.
    """
    __tablename__ = "coach_cooldown"

    id = Column(Integer, primary_key=True, autoincrement=True)
    child_id = Column(String(36), nullable=False, index=True)
    signal_type = Column(Text, nullable=False)
    last_shown_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("child_id", "signal_type", name="uq_coach_cooldown_child_signal"),
    )
