"""
Audit Client: PageSpeed Insights API.

One call returns both Lighthouse lab data and CrUX field data.
Docs: https://developers.google.com/speed/docs/insights/v5/reference/pagespeedapi/runpagespeed

Every failure (non-2xx, network error, unusable body) surfaces as
``AuditFailure``: the target site is unreachable or invalid and an immediate
retry will not help. This module never touches storage.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field

import aiohttp

from radar.config import settings
from radar.errors import AuditFailure

logger = logging.getLogger(__name__)

PSI_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

CATEGORIES = ("performance", "seo", "accessibility", "best-practices")

# Lighthouse audit id for each lab metric column
LAB_AUDITS = {
    "lcp": "largest-contentful-paint",
    "cls": "cumulative-layout-shift",
    "inp": "interaction-to-next-paint",
    "fcp": "first-contentful-paint",
    "ttfb": "server-response-time",
    "tbt": "total-blocking-time",
    "speed_index": "speed-index",
}

# loadingExperience key for each field metric column
FIELD_KEYS = {
    "crux_lcp": "LARGEST_CONTENTFUL_PAINT_MS",
    "crux_cls": "CUMULATIVE_LAYOUT_SHIFT_SCORE",
    "crux_inp": "INTERACTION_TO_NEXT_PAINT",
    "crux_fcp": "FIRST_CONTENTFUL_PAINT_MS",
}


@dataclass
class PSIAuditData:
    perf_score: float
    lcp: float | None = None
    cls: float | None = None
    inp: float | None = None
    fcp: float | None = None
    ttfb: float | None = None
    tbt: float | None = None
    speed_index: float | None = None
    crux_lcp: float | None = None
    crux_cls: float | None = None
    crux_inp: float | None = None
    crux_fcp: float | None = None
    seo_score: float | None = None
    accessibility_score: float | None = None
    best_practices_score: float | None = None
    lighthouse_raw: dict = field(default_factory=dict)
    psi_api_version: str | None = None


async def run_psi_audit(url: str, strategy: str, api_key: str | None = None) -> PSIAuditData:
    """Run one uncached audit for ``url`` and return the normalized record."""
    params: list[tuple[str, str]] = [("url", url), ("strategy", strategy)]
    params += [("category", c) for c in CATEGORIES]
    key = api_key if api_key is not None else settings.google_api_key
    if key:
        params.append(("key", key))

    status, body = await _fetch(params)

    if status < 200 or status >= 300:
        raise AuditFailure(_error_message(body, status), status)

    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        raise AuditFailure("PSI API returned a non-JSON body", status)

    return parse_psi_response(data)


async def _fetch(params: list[tuple[str, str]]) -> tuple[int, str]:
    """GET the PSI endpoint. Network errors are permanent failures for this cycle."""
    timeout = aiohttp.ClientTimeout(total=settings.psi_timeout_secs)
    headers = {"Cache-Control": "no-store"}
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(PSI_ENDPOINT, params=params, headers=headers) as resp:
                return resp.status, await resp.text()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("PSI request failed: %s", e)
        raise AuditFailure(f"PSI API unreachable: {e}") from e


def _error_message(body: str, status: int) -> str:
    try:
        message = json.loads(body).get("error", {}).get("message")
    except (json.JSONDecodeError, AttributeError, TypeError):
        message = None
    return message or f"PSI API error {status}"


def parse_psi_response(data: dict) -> PSIAuditData:
    """Flatten a PSI v5 response. Raises ``AuditFailure`` when it is unusable."""
    lhr = data.get("lighthouseResult") if isinstance(data, dict) else None
    if not isinstance(lhr, dict) or not isinstance(lhr.get("categories"), dict):
        raise AuditFailure("PSI API response is missing lighthouseResult")

    categories = lhr["categories"]
    perf = _category_score(categories, "performance")
    if perf is None:
        raise AuditFailure("PSI API response has no performance score")

    audits = lhr.get("audits") or {}
    lab = {col: _numeric_value(audits, audit_id) for col, audit_id in LAB_AUDITS.items()}

    field_metrics = (data.get("loadingExperience") or {}).get("metrics") or {}
    crux = {col: _p75(field_metrics.get(key)) for col, key in FIELD_KEYS.items()}
    # CrUX reports CLS multiplied by 100
    if crux["crux_cls"] is not None:
        crux["crux_cls"] = crux["crux_cls"] / 100

    return PSIAuditData(
        perf_score=perf,
        **lab,
        **crux,
        seo_score=_category_score(categories, "seo"),
        accessibility_score=_category_score(categories, "accessibility"),
        best_practices_score=_category_score(categories, "best-practices"),
        lighthouse_raw=lhr,
        psi_api_version=lhr.get("lighthouseVersion"),
    )


def _category_score(categories: dict, name: str) -> float | None:
    score = (categories.get(name) or {}).get("score")
    if score is None:
        return None
    return round(score * 100)


def _numeric_value(audits: dict, audit_id: str) -> float | None:
    value = (audits.get(audit_id) or {}).get("numericValue")
    return float(value) if value is not None else None


def _p75(metric: dict | None) -> float | None:
    if not metric:
        return None
    value = metric.get("percentile")
    if value is None:
        value = (metric.get("percentiles") or {}).get("p75")
    return float(value) if value is not None else None
