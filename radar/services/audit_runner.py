"""
Audit Runner: one complete audit cycle for a project.

Shared by the manual audit route, the queue job handler and the inline
cron fallback.

Only the primary path can fail the cycle:
    load project → PageSpeed call → insert AuditResult → stamp last_audit_at
Everything after that (history enrichment, alerts, AI plan) sits behind its
own failure boundary and never changes the returned audit id.

Two triggers for the same project (a manual run racing a cron job) may run
concurrently. Rows are insert-only, so the outcome is two audits, not a
corrupt one.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radar.config import Capabilities
from radar.errors import ProjectNotFound
from radar.models import AuditResult, Project, User
from radar.services import ai, pagespeed
from radar.services.alerts import check_and_fire_alerts
from radar.services.background import DetachedTasks, background_tasks
from radar.services.crux_history import enrich_audit_history
from radar.services.metrics import grade_metric
from radar.services.plan_limits import get_plan_limits, has_quota_left
from radar.services.usage import count_monthly_ai_plans

logger = logging.getLogger(__name__)

TRIGGERS = ("manual", "cron", "api")


class AuditRunner:
    """Runs audits against PageSpeed and persists the results."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        capabilities: Capabilities,
        tasks: DetachedTasks | None = None,
    ):
        self.session_factory = session_factory
        self.capabilities = capabilities
        self.tasks = tasks or background_tasks

    async def run(self, project_id: str, triggered_by: str) -> str:
        """Run one audit cycle and return the new AuditResult id.

        Raises ``ProjectNotFound`` for an unknown project and ``AuditFailure``
        when PageSpeed fails; in both cases nothing is persisted.
        """
        if triggered_by not in TRIGGERS:
            raise ValueError(f"Unknown trigger: {triggered_by}")

        async with self.session_factory() as session:
            project = await session.get(Project, project_id)
            if project is None:
                raise ProjectNotFound(project_id)

            data = await pagespeed.run_psi_audit(project.url, project.strategy)

            audit = AuditResult(
                project_id=project.id,
                strategy=project.strategy,
                perf_score=data.perf_score,
                lcp=data.lcp,
                cls=data.cls,
                inp=data.inp,
                fcp=data.fcp,
                ttfb=data.ttfb,
                tbt=data.tbt,
                speed_index=data.speed_index,
                crux_lcp=data.crux_lcp,
                crux_cls=data.crux_cls,
                crux_inp=data.crux_inp,
                crux_fcp=data.crux_fcp,
                lcp_grade=grade_metric("lcp", data.lcp),
                cls_grade=grade_metric("cls", data.cls),
                inp_grade=grade_metric("inp", data.inp),
                seo_score=data.seo_score,
                accessibility_score=data.accessibility_score,
                best_practices_score=data.best_practices_score,
                lighthouse_raw=data.lighthouse_raw,
                psi_api_version=data.psi_api_version,
                triggered_by=triggered_by,
            )
            session.add(audit)
            await session.commit()

            now = datetime.now(timezone.utc)
            await session.execute(
                update(Project)
                .where(Project.id == project.id)
                .values(last_audit_at=now, updated_at=now)
            )
            await session.commit()
            logger.info(
                "Audit %s stored for project %s (perf=%s, trigger=%s)",
                audit.id, project.id, audit.perf_score, triggered_by,
            )

        audit_id = audit.id

        self.tasks.spawn(
            enrich_audit_history(self.session_factory, audit_id, project.url),
            name=f"crux-history-{audit_id}",
        )

        try:
            async with self.session_factory() as session:
                await check_and_fire_alerts(session, project, audit, self.capabilities)
        except Exception as e:
            logger.error("Alert evaluation failed for audit %s: %s", audit_id, e)

        try:
            async with self.session_factory() as session:
                await self._maybe_generate_plan(session, project, audit)
        except Exception as e:
            logger.warning("AI action plan skipped for audit %s: %s", audit_id, e)

        return audit_id

    async def _maybe_generate_plan(
        self, session: AsyncSession, project: Project, audit: AuditResult
    ) -> bool:
        if not self.capabilities.ai_enabled:
            return False

        user = await session.get(User, project.user_id)
        limits = get_plan_limits(user.plan if user else None)
        quota = limits.ai_action_plans_per_month
        if quota == 0:
            return False

        used = await count_monthly_ai_plans(session, project.user_id)
        if not has_quota_left(quota, used):
            logger.info("AI plan quota exhausted for user %s (%d/%d)", project.user_id, used, quota)
            return False

        plan = await ai.generate_action_plan(project.url, project.strategy, audit.to_dict(include_raw=True))
        await session.execute(
            update(AuditResult)
            .where(AuditResult.id == audit.id)
            .values(ai_action_plan=plan)
        )
        await session.commit()
        logger.info("AI action plan stored for audit %s (%d items)", audit.id, len(plan))
        return True
