"""
Performance Radar: SQLAlchemy ORM models for users and monitored projects.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from radar.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Account owner, synced from the identity provider. Holds the plan tier."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    plan_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    projects: Mapped[list["Project"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User {self.id} ({self.plan})>"


class Project(Base):
    """One monitored URL."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    strategy: Mapped[str] = mapped_column(String(10), nullable=False, default="mobile")

    # "manual" | "daily" | "hourly"
    schedule: Mapped[str] = mapped_column(String(10), nullable=False, default="manual")
    next_audit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_audit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Alert thresholds in native units (ms for LCP/INP, unitless for CLS); None = off
    alert_lcp: Mapped[float | None] = mapped_column(Float, nullable=True)
    alert_cls: Mapped[float | None] = mapped_column(Float, nullable=True)
    alert_inp: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped["User"] = relationship(back_populates="projects")
    audits: Mapped[list["AuditResult"]] = relationship(  # noqa: F821
        back_populates="project", cascade="all, delete-orphan"
    )
    alerts: Mapped[list["Alert"]] = relationship(  # noqa: F821
        back_populates="project", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_projects_next_audit_at", "next_audit_at"),)

    def threshold_for(self, metric: str) -> float | None:
        return getattr(self, f"alert_{metric}", None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "strategy": self.strategy,
            "schedule": self.schedule,
            "next_audit_at": self.next_audit_at.isoformat() if self.next_audit_at else None,
            "last_audit_at": self.last_audit_at.isoformat() if self.last_audit_at else None,
            "alert_lcp": self.alert_lcp,
            "alert_cls": self.alert_cls,
            "alert_inp": self.alert_inp,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id} {self.url} [{self.schedule}]>"
