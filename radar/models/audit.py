"""
Performance Radar: audit results and the alert firing log.

AuditResult rows are write-once. The only later writes are the two
asynchronous patches (``ai_action_plan`` and ``crux_history_raw``), each
applied by id.
"""

import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from radar.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _share_token() -> str:
    return secrets.token_urlsafe(16)


# Lab metric columns, in the order they are reported
LAB_METRICS = ("perf_score", "lcp", "cls", "inp", "fcp", "ttfb", "tbt", "speed_index")
FIELD_METRICS = ("crux_lcp", "crux_cls", "crux_inp", "crux_fcp")
CATEGORY_SCORES = ("seo_score", "accessibility_score", "best_practices_score")


class AuditResult(Base):
    """One Lighthouse run for a project."""

    __tablename__ = "audit_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    strategy: Mapped[str] = mapped_column(String(10), nullable=False)

    # Lighthouse lab data
    perf_score: Mapped[float | None] = mapped_column(Float, nullable=True)  # 0-100
    lcp: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    cls: Mapped[float | None] = mapped_column(Float, nullable=True)
    inp: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    fcp: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    ttfb: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    tbt: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms
    speed_index: Mapped[float | None] = mapped_column(Float, nullable=True)  # ms

    # CrUX field data (p75); None when the origin has too little traffic
    crux_lcp: Mapped[float | None] = mapped_column(Float, nullable=True)
    crux_cls: Mapped[float | None] = mapped_column(Float, nullable=True)
    crux_inp: Mapped[float | None] = mapped_column(Float, nullable=True)
    crux_fcp: Mapped[float | None] = mapped_column(Float, nullable=True)

    lcp_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cls_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    inp_grade: Mapped[str | None] = mapped_column(String(20), nullable=True)

    seo_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    accessibility_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    best_practices_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Opaque blobs. none_as_null keeps "absent" as SQL NULL so quota counts work.
    lighthouse_raw: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    ai_action_plan: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    crux_history_raw: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)

    share_token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=_share_token
    )
    psi_api_version: Mapped[str | None] = mapped_column(String(32), nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(10), nullable=False, default="manual")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)

    project: Mapped["Project"] = relationship(back_populates="audits")  # noqa: F821

    def to_dict(self, include_raw: bool = False) -> dict:
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "strategy": self.strategy,
            **{name: getattr(self, name) for name in LAB_METRICS + FIELD_METRICS + CATEGORY_SCORES},
            "lcp_grade": self.lcp_grade,
            "cls_grade": self.cls_grade,
            "inp_grade": self.inp_grade,
            "ai_action_plan": self.ai_action_plan,
            "crux_history": self.crux_history_raw,
            "share_token": self.share_token,
            "psi_api_version": self.psi_api_version,
            "triggered_by": self.triggered_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_raw:
            data["lighthouse_raw"] = self.lighthouse_raw
        return data

    def __repr__(self):
        return f"<AuditResult {self.id} project={self.project_id} perf={self.perf_score}>"


class Alert(Base):
    """One firing of one metric breach. Immutable apart from the delivery flags."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    audit_id: Mapped[str] = mapped_column(
        ForeignKey("audit_results.id", ondelete="CASCADE"), nullable=False
    )

    metric: Mapped[str] = mapped_column(String(10), nullable=False)  # lcp | cls | inp
    value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)

    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    project: Mapped["Project"] = relationship(back_populates="alerts")  # noqa: F821

    __table_args__ = (Index("ix_alerts_project_metric_sent", "project_id", "metric", "sent_at"),)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "audit_id": self.audit_id,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "email_sent": self.email_sent,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
