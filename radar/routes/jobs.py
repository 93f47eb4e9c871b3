"""
API Routes: hourly cron trigger and the queue's job receiver.

Mounted under ``/api``; these are called by infrastructure, not users.
"""

import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from radar.config import Capabilities, get_capabilities
from radar.database import get_session_factory
from radar.errors import AuditFailure, ProjectNotFound
from radar.routes.deps import get_dispatcher, get_runner
from radar.services import qstash
from radar.services.audit_runner import AuditRunner
from radar.services.dispatcher import Dispatcher
from radar.services.schedule import advance_next_audit_at

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])


@router.get("/cron/trigger-audits")
async def trigger_audits(
    authorization: str | None = Header(None),
    capabilities: Capabilities = Depends(get_capabilities),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    # Without a configured secret the trigger is open (local dev)
    if capabilities.cron_secret and authorization != f"Bearer {capabilities.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    report = await dispatcher.dispatch_due()
    logger.info(
        "Cron dispatch: %d due, %d failed (%s)",
        report.dispatched, len(report.failed), report.mode,
    )
    return report.to_dict()


@router.post("/jobs/run-audit")
async def run_audit_job(
    request: Request,
    upstash_signature: str | None = Header(None),
    capabilities: Capabilities = Depends(get_capabilities),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    runner: AuditRunner = Depends(get_runner),
):
    """Run one queued audit.

    Status codes drive the queue: any 5xx is retried, everything else is
    final. Permanent audit failures therefore answer 200.
    """
    raw_body = await request.body()

    if capabilities.verify_signatures:
        if not qstash.verify_signature(capabilities, upstash_signature or "", raw_body):
            return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    project_id = payload.get("projectId") if isinstance(payload, dict) else None
    if not isinstance(project_id, str) or not project_id:
        return JSONResponse(status_code=400, content={"error": "Missing projectId"})

    try:
        audit_id = await runner.run(project_id, "cron")
    except ProjectNotFound:
        return JSONResponse(status_code=404, content={"error": "Project not found"})
    except AuditFailure as e:
        logger.warning("Queued audit for project %s failed permanently: %s", project_id, e.message)
        await _reschedule(session_factory, project_id)
        return {"error": e.message, "permanent": True}
    except Exception as e:
        logger.error("Queued audit for project %s failed: %s", project_id, e)
        return JSONResponse(status_code=500, content={"error": "Audit failed"})

    await _reschedule(session_factory, project_id)
    logger.info("Queued audit %s completed for project %s", audit_id, project_id)
    return {"ok": True}


async def _reschedule(session_factory: async_sessionmaker, project_id: str) -> None:
    # Never turn a finished audit into a 5xx
    try:
        async with session_factory() as session:
            await advance_next_audit_at(session, project_id)
    except Exception as e:
        logger.error("Could not reschedule project %s: %s", project_id, e)
