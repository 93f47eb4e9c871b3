"""
Tests for the PageSpeed Insights client and response parsing.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from radar.errors import AuditFailure
from radar.services.pagespeed import parse_psi_response, run_psi_audit
from tests.conftest import make_psi_payload


class TestParsePsiResponse:
    def test_lab_metrics(self, psi_payload):
        data = parse_psi_response(psi_payload)
        assert data.perf_score == 72
        assert data.lcp == 3200.0
        assert data.cls == 0.05
        assert data.inp == 180.0
        assert data.ttfb == 420.0
        assert data.speed_index == 2900.0
        assert data.psi_api_version == "12.2.1"

    def test_category_scores(self, psi_payload):
        data = parse_psi_response(psi_payload)
        assert data.seo_score == 91
        assert data.accessibility_score == 88
        assert data.best_practices_score == 96

    def test_field_metrics(self, psi_payload):
        data = parse_psi_response(psi_payload)
        assert data.crux_lcp == 2900.0
        assert data.crux_inp == 210.0
        # Reported x100 by CrUX
        assert data.crux_cls == pytest.approx(0.08)

    def test_percentiles_fallback(self):
        payload = make_psi_payload()
        payload["loadingExperience"]["metrics"]["LARGEST_CONTENTFUL_PAINT_MS"] = {"percentiles": {"p75": 2600}}
        assert parse_psi_response(payload).crux_lcp == 2600.0

    def test_no_field_data(self):
        data = parse_psi_response(make_psi_payload(field=False))
        assert data.crux_lcp is None
        assert data.crux_cls is None

    def test_missing_lab_metric_is_none(self):
        payload = make_psi_payload()
        del payload["lighthouseResult"]["audits"]["interaction-to-next-paint"]
        assert parse_psi_response(payload).inp is None

    def test_missing_lighthouse_result(self):
        with pytest.raises(AuditFailure):
            parse_psi_response({"id": "https://example.com/"})

    def test_null_performance_score(self):
        with pytest.raises(AuditFailure):
            parse_psi_response(make_psi_payload(perf=None))

    def test_keeps_raw_lighthouse(self, psi_payload):
        data = parse_psi_response(psi_payload)
        assert data.lighthouse_raw is psi_payload["lighthouseResult"]


class TestRunPsiAudit:
    async def test_success(self, mock_psi):
        data = await run_psi_audit("https://example.com", "mobile", api_key="k-123")
        assert data.perf_score == 72

        params = mock_psi.call_args.args[0]
        assert ("url", "https://example.com") in params
        assert ("strategy", "mobile") in params
        assert ("key", "k-123") in params
        assert [v for k, v in params if k == "category"] == [
            "performance", "seo", "accessibility", "best-practices",
        ]

    async def test_no_key(self, mock_psi):
        await run_psi_audit("https://example.com", "desktop", api_key="")
        params = mock_psi.call_args.args[0]
        assert all(k != "key" for k, _ in params)

    async def test_http_error_uses_api_message(self):
        body = json.dumps({"error": {"code": 500, "message": "Lighthouse returned error: NO_FCP"}})
        with patch("radar.services.pagespeed._fetch", new_callable=AsyncMock, return_value=(500, body)):
            with pytest.raises(AuditFailure) as exc:
                await run_psi_audit("https://example.com", "mobile", api_key="")
        assert exc.value.status_code == 500
        assert exc.value.message == "Lighthouse returned error: NO_FCP"

    async def test_http_error_without_body(self):
        with patch("radar.services.pagespeed._fetch", new_callable=AsyncMock, return_value=(429, "")):
            with pytest.raises(AuditFailure) as exc:
                await run_psi_audit("https://example.com", "mobile", api_key="")
        assert exc.value.message == "PSI API error 429"

    async def test_non_json_body(self):
        with patch("radar.services.pagespeed._fetch", new_callable=AsyncMock, return_value=(200, "<html>")):
            with pytest.raises(AuditFailure):
                await run_psi_audit("https://example.com", "mobile", api_key="")

    async def test_timeout_is_audit_failure(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=asyncio.TimeoutError())
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        with patch("radar.services.pagespeed.aiohttp.ClientSession", return_value=session):
            with pytest.raises(AuditFailure) as exc:
                await run_psi_audit("https://example.com", "mobile", api_key="")
        assert exc.value.message.startswith("PSI API unreachable")
