"""
Per-owner usage counters for plan quotas.

Monthly quotas reset at the start of the UTC calendar month and are counted
across all of the owner's projects.
"""

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from radar.errors import QuotaExceeded
from radar.models import AuditResult, Project
from radar.services.plan_limits import UNLIMITED, get_plan_limits


def month_start(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def count_monthly_runs(session: AsyncSession, user_id: str, now: datetime | None = None) -> int:
    """Audit results created this month for any of the user's projects."""
    result = await session.execute(
        select(func.count(AuditResult.id))
        .join(Project, AuditResult.project_id == Project.id)
        .where(Project.user_id == user_id)
        .where(AuditResult.created_at >= month_start(now))
    )
    return result.scalar_one()


async def count_monthly_ai_plans(session: AsyncSession, user_id: str, now: datetime | None = None) -> int:
    """Audit results created this month that carry an AI action plan."""
    result = await session.execute(
        select(func.count(AuditResult.id))
        .join(Project, AuditResult.project_id == Project.id)
        .where(Project.user_id == user_id)
        .where(AuditResult.created_at >= month_start(now))
        .where(AuditResult.ai_action_plan.is_not(None))
    )
    return result.scalar_one()


async def count_projects(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count(Project.id)).where(Project.user_id == user_id)
    )
    return result.scalar_one()


async def ensure_manual_run_quota(session: AsyncSession, user_id: str, plan: str) -> None:
    """Raise ``QuotaExceeded`` when the monthly manual-run allowance is used up."""
    limit = get_plan_limits(plan).manual_runs_per_month
    if limit == UNLIMITED:
        return
    used = await count_monthly_runs(session, user_id)
    if used >= limit:
        raise QuotaExceeded(
            f"Monthly audit limit reached ({limit} runs). Upgrade to continue.", limit
        )


async def ensure_project_quota(session: AsyncSession, user_id: str, plan: str) -> None:
    limits = get_plan_limits(plan)
    if await count_projects(session, user_id) >= limits.max_projects:
        s = "" if limits.max_projects == 1 else "s"
        raise QuotaExceeded(
            f"Your {plan} plan allows {limits.max_projects} project{s}. Upgrade to add more.",
            limits.max_projects,
        )
