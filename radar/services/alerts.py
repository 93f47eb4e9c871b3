"""
Alert Evaluator: threshold checks, 24h dedupe and email dispatch.

Per (project, metric) the state goes quiet → breached → fired, and back to
quiet once the last firing is older than the dedupe window. One audit cycle
sends at most one email, covering every metric that fired in that cycle.

Dedupe compares wall-clock timestamps; under heavy clock skew between
workers a metric could fire twice inside the window. Acceptable for
performance alerting.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from radar.config import Capabilities
from radar.models import Alert, AuditResult, Project, User
from radar.services.email_service import build_alert_email, send_email
from radar.services.metrics import ALERTABLE_METRICS
from radar.services.plan_limits import get_plan_limits

logger = logging.getLogger(__name__)

DEDUPE_WINDOW = timedelta(hours=24)


def find_breaches(project: Project, audit: AuditResult) -> list[dict]:
    """Metrics whose lab value is above the project's configured threshold."""
    breaches = []
    for metric in ALERTABLE_METRICS:
        threshold = project.threshold_for(metric)
        value = getattr(audit, metric)
        if threshold is None or value is None:
            continue
        if value > threshold:
            breaches.append({"metric": metric, "value": value, "threshold": threshold})
    return breaches


async def _recently_fired(
    session: AsyncSession, project_id: str, metric: str, since: datetime
) -> bool:
    result = await session.execute(
        select(Alert.id)
        .where(Alert.project_id == project_id)
        .where(Alert.metric == metric)
        .where(Alert.sent_at >= since)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def check_and_fire_alerts(
    session: AsyncSession,
    project: Project,
    audit: AuditResult,
    capabilities: Capabilities,
    now: datetime | None = None,
) -> list[Alert]:
    """Record alerts for fresh breaches and send one consolidated email.

    Returns the Alert rows inserted in this cycle.
    """
    breaches = find_breaches(project, audit)
    if not breaches:
        return []

    now = now or datetime.now(timezone.utc)
    since = now - DEDUPE_WINDOW
    to_fire = []
    for breach in breaches:
        if await _recently_fired(session, project.id, breach["metric"], since):
            logger.info(
                "Alert %s for project %s suppressed: already fired in the last 24h",
                breach["metric"], project.id,
            )
            continue
        to_fire.append(breach)

    if not to_fire:
        return []

    fired = [
        Alert(
            project_id=project.id,
            audit_id=audit.id,
            metric=b["metric"],
            value=b["value"],
            threshold=b["threshold"],
            email_sent=False,
            sent_at=now,
        )
        for b in to_fire
    ]
    session.add_all(fired)
    await session.commit()
    logger.info(
        "Fired %d alert(s) for project %s: %s",
        len(fired), project.id, ", ".join(b["metric"] for b in to_fire),
    )

    if not capabilities.email_enabled:
        return fired

    user = await session.get(User, project.user_id)
    if user is None or not user.email:
        return fired
    if not get_plan_limits(user.plan).email_alerts:
        logger.info("Plan %s has no email alerts: project %s not notified", user.plan, project.id)
        return fired

    try:
        subject, html = build_alert_email(
            project_name=project.name,
            project_url=project.url,
            project_page_url=f"{capabilities.app_url}/projects/{project.id}",
            breaches=to_fire,
            triggered_by=audit.triggered_by,
        )
        outcome = await send_email(to=user.email, subject=subject, body_html=html)
        if outcome["success"]:
            await session.execute(
                update(Alert)
                .where(Alert.id.in_([a.id for a in fired]))
                .values(email_sent=True)
            )
            await session.commit()
            for alert in fired:
                alert.email_sent = True
    except Exception as e:
        logger.error("Failed to send alert email for project %s: %s", project.id, e)

    return fired
