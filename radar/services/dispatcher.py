"""
Scheduler/Dispatcher: fan due projects out to the audit pipeline.

Called by the hourly cron trigger.

With a queue configured, every due project becomes exactly one QStash job
and the job endpoint owns rescheduling. Without one (local/dev) audits run
inline, each isolated from the others' failures, and ``next_audit_at`` is
advanced here.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import async_sessionmaker

from radar.config import Capabilities
from radar.errors import AuditFailure
from radar.services import qstash
from radar.services.audit_runner import AuditRunner
from radar.services.schedule import advance_next_audit_at, find_due_projects

logger = logging.getLogger(__name__)

JOB_PATH = "/api/jobs/run-audit"


@dataclass
class DispatchReport:
    dispatched: int = 0
    failed: list[str] = field(default_factory=list)
    mode: str = "inline"

    def to_dict(self) -> dict:
        return {"dispatched": self.dispatched, "failed": len(self.failed), "mode": self.mode}


class Dispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        capabilities: Capabilities,
        runner: AuditRunner | None = None,
    ):
        self.session_factory = session_factory
        self.capabilities = capabilities
        self.runner = runner or AuditRunner(session_factory, capabilities)

    async def dispatch_due(self, now: datetime | None = None) -> DispatchReport:
        now = now or datetime.now(timezone.utc)
        async with self.session_factory() as session:
            due = [p.id for p in await find_due_projects(session, now)]

        if not due:
            return DispatchReport(mode="queue" if self.capabilities.queue_enabled else "inline")

        logger.info("Dispatching %d due project(s)", len(due))
        if self.capabilities.queue_enabled:
            return await self._enqueue(due)
        return await self._run_inline(due)

    async def _enqueue(self, project_ids: list[str]) -> DispatchReport:
        destination = f"{self.capabilities.app_url}{JOB_PATH}"
        results = await asyncio.gather(
            *(qstash.publish_json(self.capabilities, destination, {"projectId": pid}) for pid in project_ids),
            return_exceptions=True,
        )
        report = DispatchReport(dispatched=len(project_ids), mode="queue")
        for pid, outcome in zip(project_ids, results):
            if isinstance(outcome, BaseException):
                logger.error("Failed to enqueue audit for project %s: %s", pid, outcome)
                report.failed.append(pid)
        return report

    async def _run_inline(self, project_ids: list[str]) -> DispatchReport:
        # Dev fallback: one at a time, each behind its own failure boundary
        report = DispatchReport(dispatched=len(project_ids), mode="inline")
        for pid in project_ids:
            if not await self._run_one(pid):
                report.failed.append(pid)
        return report

    async def _run_one(self, project_id: str) -> bool:
        """Audit one project and reschedule it. Never raises."""
        ok = False
        try:
            await self.runner.run(project_id, "cron")
            ok = True
        except AuditFailure as e:
            logger.warning("Scheduled audit for project %s failed permanently: %s", project_id, e.message)
        except Exception as e:
            logger.error("Scheduled audit for project %s failed: %s", project_id, e)

        # No queue means no retry: always move the project out of the due set
        try:
            async with self.session_factory() as session:
                await advance_next_audit_at(session, project_id)
        except Exception as e:
            logger.error("Could not reschedule project %s: %s", project_id, e)
            ok = False
        return ok
