"""
API Routes: projects, schedules, alert thresholds, audit history and manual audits.
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from radar.database import get_db
from radar.errors import AuditFailure, ProjectNotFound, QuotaExceeded
from radar.models import Alert, AuditResult, Project, User
from radar.routes.deps import get_current_user, get_runner
from radar.schemas import AlertThresholdsRequest, ProjectCreateRequest, ScheduleUpdateRequest
from radar.services.audit_runner import AuditRunner
from radar.services.plan_limits import get_plan_limits
from radar.services.schedule import initial_next_audit_at
from radar.services.url_validation import resolves_to_private_address, validate_audit_url
from radar.services.usage import ensure_manual_run_quota, ensure_project_quota

logger = logging.getLogger(__name__)

router = APIRouter(tags=["projects"])


async def _owned_project(session: AsyncSession, project_id: str, user_id: str) -> Project:
    result = await session.execute(
        select(Project).where(Project.id == project_id, Project.user_id == user_id)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ── Projects ────────────────────────────────────────────

@router.post("/projects", status_code=201)
async def create_project(
    req: ProjectCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    validation = validate_audit_url(req.url)
    if not validation.valid:
        raise HTTPException(status_code=422, detail=validation.error)

    hostname = urlsplit(validation.normalized).hostname or ""
    if await resolves_to_private_address(hostname):
        raise HTTPException(status_code=422, detail="Cannot audit local or private network URLs")

    try:
        await ensure_project_quota(session, user.id, user.plan)
    except QuotaExceeded as e:
        return JSONResponse(status_code=403, content={"error": e.message, "limitReached": True})

    name = (req.name or "").strip() or hostname.removeprefix("www.")
    project = Project(
        user_id=user.id,
        url=validation.normalized,
        name=name,
        strategy=req.strategy.value,
    )
    session.add(project)
    await session.commit()
    await session.refresh(project)
    logger.info("Project %s created for %s (%s)", project.id, user.id, project.url)
    return project.to_dict()


@router.get("/projects")
async def list_projects(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    result = await session.execute(
        select(Project).where(Project.user_id == user.id).order_by(Project.created_at.desc())
    )
    projects = result.scalars().all()
    return {"projects": [p.to_dict() for p in projects], "total": len(projects)}


@router.get("/projects/{project_id}")
async def get_project(
    project_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    project = await _owned_project(session, project_id, user.id)
    return project.to_dict()


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(
    project_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    project = await _owned_project(session, project_id, user.id)
    await session.delete(project)
    await session.commit()
    logger.info("Project %s deleted", project_id)


@router.put("/projects/{project_id}/schedule")
async def update_schedule(
    project_id: str,
    req: ScheduleUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    project = await _owned_project(session, project_id, user.id)
    schedule = req.schedule.value

    limits = get_plan_limits(user.plan)
    if not limits.allows_schedule(schedule):
        message = (
            "Hourly audits require the Pro plan. Upgrade to enable hourly monitoring."
            if limits.scheduled_runs
            else "Scheduled audits require a paid plan. Upgrade to enable daily or hourly monitoring."
        )
        return JSONResponse(status_code=403, content={"error": message, "planGated": True})

    project.schedule = schedule
    project.next_audit_at = initial_next_audit_at(schedule)
    await session.commit()
    return project.to_dict()


@router.put("/projects/{project_id}/alerts")
async def update_alert_thresholds(
    project_id: str,
    req: AlertThresholdsRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    project = await _owned_project(session, project_id, user.id)
    project.alert_lcp = req.alert_lcp
    project.alert_cls = req.alert_cls
    project.alert_inp = req.alert_inp
    await session.commit()
    return project.to_dict()


@router.get("/projects/{project_id}/alerts")
async def list_alerts(
    project_id: str,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    project = await _owned_project(session, project_id, user.id)
    result = await session.execute(
        select(Alert)
        .where(Alert.project_id == project.id)
        .order_by(Alert.sent_at.desc())
        .limit(limit)
    )
    alerts = result.scalars().all()
    return {"alerts": [a.to_dict() for a in alerts], "total": len(alerts)}


# ── Audits ──────────────────────────────────────────────

@router.post("/projects/{project_id}/audit", tags=["audits"])
async def run_manual_audit(
    project_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
    runner: AuditRunner = Depends(get_runner),
):
    project = await _owned_project(session, project_id, user.id)

    try:
        await ensure_manual_run_quota(session, user.id, user.plan)
    except QuotaExceeded as e:
        return JSONResponse(status_code=429, content={"error": e.message, "limitReached": True})

    try:
        audit_id = await runner.run(project.id, "manual")
    except AuditFailure as e:
        return JSONResponse(status_code=502, content={"error": e.message})
    except ProjectNotFound:
        raise HTTPException(status_code=404, detail="Project not found")
    except Exception as e:
        logger.error("Manual audit for project %s failed: %s", project.id, e)
        return JSONResponse(status_code=500, content={"error": "Audit failed"})

    audit = await session.get(AuditResult, audit_id, populate_existing=True)
    return audit.to_dict()


@router.get("/projects/{project_id}/audits", tags=["audits"])
async def list_audits(
    project_id: str,
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    """Audit history inside the plan's retention window, newest first."""
    project = await _owned_project(session, project_id, user.id)
    since = datetime.now(timezone.utc) - timedelta(days=get_plan_limits(user.plan).history_days)
    result = await session.execute(
        select(AuditResult)
        .where(AuditResult.project_id == project.id)
        .where(AuditResult.created_at >= since)
        .order_by(AuditResult.created_at.desc())
        .limit(limit)
    )
    audits = result.scalars().all()
    return {"audits": [a.to_dict() for a in audits], "total": len(audits)}


@router.get("/audits/{audit_id}", tags=["audits"])
async def get_audit(
    audit_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db),
):
    result = await session.execute(
        select(AuditResult)
        .join(Project, AuditResult.project_id == Project.id)
        .where(AuditResult.id == audit_id, Project.user_id == user.id)
    )
    audit = result.scalar_one_or_none()
    if audit is None:
        raise HTTPException(status_code=404, detail="Audit not found")
    return audit.to_dict(include_raw=True)


@router.get("/share/{token}", tags=["audits"])
async def get_shared_audit(token: str, session: AsyncSession = Depends(get_db)):
    """Public read-only view of one audit."""
    result = await session.execute(
        select(AuditResult, Project)
        .join(Project, AuditResult.project_id == Project.id)
        .where(AuditResult.share_token == token)
    )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=404, detail="Report not found")
    audit, project = row
    return {
        "project": {"name": project.name, "url": project.url},
        "audit": audit.to_dict(),
    }
