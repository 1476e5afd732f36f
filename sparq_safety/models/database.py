"""
Database Models

SQLAlchemy ORM models for durable crisis safety state. Domain objects
are stored as JSON payloads next to the columns used for lookup and
ordering.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class AssessmentRecord(Base):
    """
    Assessment model.

    One row per evaluated utterance. The utterance itself is never stored.
    """

    __tablename__ = "assessments"
    __table_args__ = (
        Index("idx_assessment_user_time", "user_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    couple_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    requires_review: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AssessmentRecord(id={self.id}, user_id='{self.user_id}', "
            f"severity='{self.severity}')>"
        )


class HistoryEntry(Base):
    """
    History window entry.

    Bounded per user; the oldest rows are trimmed on append.
    """

    __tablename__ = "assessment_history"
    __table_args__ = (
        Index("idx_history_user_seq", "user_id", "seq"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    assessment_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)


class AlertRecord(Base, TimestampMixin):
    """
    Crisis Alert model.

    One row per crisis episode; status only moves forward.
    """

    __tablename__ = "crisis_alerts"
    __table_args__ = (
        Index("idx_alert_user", "user_id"),
        Index("idx_alert_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    couple_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notification_pending: Mapped[bool] = mapped_column(Boolean, default=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AlertRecord(id={self.id}, user_id='{self.user_id}', "
            f"severity='{self.severity}', status='{self.status}')>"
        )


class FollowUpRecord(Base):
    """Scheduled follow-up for an alert."""

    __tablename__ = "follow_ups"
    __table_args__ = (
        Index("idx_follow_up_alert", "alert_id"),
        Index("idx_follow_up_due", "scheduled_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(String(36), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)


class ResourceAccessRecord(Base):
    """A user contacting a crisis resource."""

    __tablename__ = "resource_access_log"
    __table_args__ = (
        Index("idx_resource_access_user_time", "user_id", "accessed_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(100), nullable=False)
    access_method: Mapped[str] = mapped_column(String(20), nullable=False)
    alert_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SafetyPlanVersion(Base):
    """
    Safety Plan model.

    Append-only: every update is a new row with a higher version.
    """

    __tablename__ = "safety_plan_versions"
    __table_args__ = (
        UniqueConstraint("user_id", "version", name="uq_safety_plan_user_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[str] = mapped_column(String(36), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<SafetyPlanVersion(user_id='{self.user_id}', version={self.version})>"


class ManualInterventionRecord(Base):
    """Alert handed to humans after automated escalation gave up."""

    __tablename__ = "manual_interventions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    alert_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
