"""
History Enricher: Chrome UX Report History API.

25 collection periods of weekly p75 real-user data for LCP, CLS, INP and FCP.
Docs: https://developer.chrome.com/docs/crux/history-api/

Absence is the common case (low-traffic sites, API not enabled on the key)
and is never an error. Enrichment runs detached after an audit is stored and
patches exactly one column of that row.
"""

import logging
from urllib.parse import urlsplit

import aiohttp
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from radar.config import settings
from radar.models.audit import AuditResult

logger = logging.getLogger(__name__)

CRUX_HISTORY_ENDPOINT = "https://chromeuxreport.googleapis.com/v1/records:queryHistoryRecord"

METRICS = [
    "largest_contentful_paint",
    "cumulative_layout_shift",
    "interaction_to_next_paint",
    "first_contentful_paint",
]

TIMEOUT = aiohttp.ClientTimeout(total=20)


async def _query(body: dict) -> dict | None:
    params = {"key": settings.google_api_key} if settings.google_api_key else None
    async with aiohttp.ClientSession(timeout=TIMEOUT) as session:
        async with session.post(
            CRUX_HISTORY_ENDPOINT,
            params=params,
            json={**body, "metrics": METRICS},
            headers={"Cache-Control": "no-store"},
        ) as resp:
            if resp.status != 200:
                return None
            data = await resp.json(content_type=None)

    record = (data or {}).get("record") or {}
    if not record.get("collectionPeriods"):
        return None
    return {
        "collectionPeriods": record["collectionPeriods"],
        "metrics": record.get("metrics") or {},
    }


async def fetch_crux_history(page_url: str) -> dict | None:
    """Page-level history first, falling back to the origin. None when unavailable."""
    try:
        record = await _query({"url": page_url})
        if record:
            return record
        parts = urlsplit(page_url)
        return await _query({"origin": f"{parts.scheme}://{parts.netloc}"})
    except Exception as e:
        logger.info("CrUX history unavailable for %s: %s", page_url, e)
        return None


async def enrich_audit_history(
    session_factory: async_sessionmaker, audit_id: str, page_url: str
) -> bool:
    """Fetch history and patch ``crux_history_raw`` on one audit. Never raises."""
    try:
        record = await fetch_crux_history(page_url)
        if record is None:
            return False
        async with session_factory() as session:
            await session.execute(
                update(AuditResult)
                .where(AuditResult.id == audit_id)
                .values(crux_history_raw=record)
            )
            await session.commit()
        logger.info("Stored CrUX history for audit %s", audit_id)
        return True
    except Exception as e:
        logger.warning("CrUX history enrichment failed for audit %s: %s", audit_id, e)
        return False
