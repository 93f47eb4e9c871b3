"""
Scheduling helpers: due-set query and next-run arithmetic.

A project is due when its schedule is not manual and ``next_audit_at`` is
either unset (schedule just switched on) or in the past.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from radar.models import Project

SCHEDULE_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
}

# Delay before the first run after a schedule is switched on, so the next
# hourly cron tick picks it up
FIRST_RUN_DELAY = timedelta(minutes=5)


def next_audit_at(schedule: str, now: datetime | None = None) -> datetime | None:
    """Next run time counted from ``now``. None for manual projects."""
    interval = SCHEDULE_INTERVALS.get(schedule)
    if interval is None:
        return None
    return (now or datetime.now(timezone.utc)) + interval


def initial_next_audit_at(schedule: str, now: datetime | None = None) -> datetime | None:
    if schedule == "manual":
        return None
    return (now or datetime.now(timezone.utc)) + FIRST_RUN_DELAY


def due_projects_query(now: datetime):
    return (
        select(Project)
        .where(Project.schedule != "manual")
        .where(or_(Project.next_audit_at.is_(None), Project.next_audit_at <= now))
        .order_by(Project.next_audit_at)
    )


async def find_due_projects(session: AsyncSession, now: datetime | None = None) -> list[Project]:
    result = await session.execute(due_projects_query(now or datetime.now(timezone.utc)))
    return list(result.scalars().all())


async def advance_next_audit_at(
    session: AsyncSession, project_id: str, now: datetime | None = None
) -> datetime | None:
    """Push ``next_audit_at`` one interval past ``now`` based on the current schedule.

    Reads the schedule fresh so a change made while the audit ran wins.
    Manual projects are left untouched.
    """
    project = await session.get(Project, project_id, populate_existing=True)
    if project is None or project.schedule == "manual":
        return None
    now = now or datetime.now(timezone.utc)
    nxt = next_audit_at(project.schedule, now)
    await session.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(next_audit_at=nxt, updated_at=now)
    )
    await session.commit()
    return nxt
