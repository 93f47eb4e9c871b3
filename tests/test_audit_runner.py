"""
Tests for the audit runner: one full cycle per call.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from radar.config import Capabilities
from radar.errors import AuditFailure, ProjectNotFound
from radar.models import Alert, AuditResult, Project
from radar.services.audit_runner import AuditRunner
from tests.conftest import APP_URL, make_psi_payload

PLAN = [{"title": "Defer scripts", "action": "Add defer to analytics.js", "why": "Unblocks render", "difficulty": "Easy"}]


async def _count(session_factory, model, *where) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar_one()


class TestRunnerPrimaryPath:
    async def test_round_trip(self, runner, make_project, session_factory, mock_psi, tasks):
        project = await make_project()
        audit_id = await runner.run(project.id, "manual")
        await tasks.drain()

        async with session_factory() as session:
            audit = await session.get(AuditResult, audit_id)
            stored_project = await session.get(Project, project.id)

        assert audit.project_id == project.id
        assert audit.strategy == "mobile"
        assert audit.perf_score == 72
        assert audit.lcp == 3200.0
        assert audit.cls == 0.05
        assert audit.inp == 180.0
        assert audit.crux_cls == pytest.approx(0.08)
        assert audit.lcp_grade == "needs-improvement"
        assert audit.cls_grade == "good"
        assert audit.inp_grade == "good"
        assert audit.triggered_by == "manual"
        assert audit.psi_api_version == "12.2.1"
        assert audit.lighthouse_raw["lighthouseVersion"] == "12.2.1"
        assert audit.share_token
        assert audit.ai_action_plan is None
        assert stored_project.last_audit_at is not None

    async def test_uses_project_url_and_strategy(self, runner, make_project, mock_psi):
        project = await make_project(url="https://example.com/shop", strategy="desktop")
        await runner.run(project.id, "api")
        params = mock_psi.call_args.args[0]
        assert ("url", "https://example.com/shop") in params
        assert ("strategy", "desktop") in params

    async def test_unknown_project(self, runner, mock_psi):
        with pytest.raises(ProjectNotFound):
            await runner.run("does-not-exist", "cron")
        mock_psi.assert_not_awaited()

    async def test_unknown_trigger(self, runner, make_project):
        project = await make_project()
        with pytest.raises(ValueError):
            await runner.run(project.id, "webhook")

    async def test_psi_500_persists_nothing(self, runner, make_project, session_factory):
        project = await make_project()
        body = json.dumps({"error": {"code": 500, "message": "Internal error encountered."}})
        with patch("radar.services.pagespeed._fetch", new_callable=AsyncMock, return_value=(500, body)):
            with pytest.raises(AuditFailure) as exc:
                await runner.run(project.id, "cron")

        assert exc.value.status_code == 500
        assert await _count(session_factory, AuditResult) == 0
        async with session_factory() as session:
            assert (await session.get(Project, project.id)).last_audit_at is None


class TestRunnerEnrichment:
    async def test_history_stored_in_background(self, runner, make_project, session_factory, mock_psi, tasks, no_crux_history):
        history = {"collectionPeriods": [{}], "metrics": {}}
        no_crux_history.return_value = history
        project = await make_project()

        audit_id = await runner.run(project.id, "manual")
        await tasks.drain()

        async with session_factory() as session:
            audit = await session.get(AuditResult, audit_id)
            assert audit.crux_history_raw == history

    async def test_history_outage_keeps_core_metrics(self, runner, make_project, session_factory, mock_psi, tasks, no_crux_history):
        no_crux_history.side_effect = RuntimeError("CrUX 503")
        project = await make_project()

        audit_id = await runner.run(project.id, "manual")
        await tasks.drain()

        async with session_factory() as session:
            audit = await session.get(AuditResult, audit_id)
        assert audit.crux_history_raw is None
        assert audit.perf_score == 72
        assert audit.lcp == 3200.0
        assert tasks.failed == 0

    async def test_alert_failure_does_not_fail_cycle(self, runner, make_project, session_factory, mock_psi):
        project = await make_project(alert_lcp=2500.0)
        with patch(
            "radar.services.audit_runner.check_and_fire_alerts",
            new_callable=AsyncMock,
            side_effect=RuntimeError("db hiccup"),
        ):
            audit_id = await runner.run(project.id, "cron")
        assert audit_id
        assert await _count(session_factory, AuditResult) == 1

    async def test_hourly_lcp_alert_scenario(self, make_project, session_factory, mock_psi, tasks):
        caps = Capabilities(app_url=APP_URL, email_enabled=True)
        runner = AuditRunner(session_factory, caps, tasks)
        project = await make_project(plan="pro", schedule="hourly", alert_lcp=2500.0)

        with patch(
            "radar.services.alerts.send_email",
            new_callable=AsyncMock,
            return_value={"success": True, "message": "sent"},
        ) as send:
            await runner.run(project.id, "cron")
            await runner.run(project.id, "cron")

        assert await _count(session_factory, AuditResult) == 2
        assert await _count(session_factory, Alert, Alert.metric == "lcp") == 1
        send.assert_awaited_once()
        async with session_factory() as session:
            alert = (await session.execute(select(Alert))).scalar_one()
        assert alert.value == 3200.0
        assert alert.threshold == 2500.0
        assert alert.email_sent is True


class TestRunnerActionPlans:
    @pytest.fixture
    def ai_runner(self, session_factory, tasks):
        caps = Capabilities(app_url=APP_URL, ai_enabled=True)
        return AuditRunner(session_factory, caps, tasks)

    async def test_quota_allows_exactly_n(self, ai_runner, make_project, session_factory, mock_psi):
        # starter: 5 plans per month
        project = await make_project(plan="starter")
        with patch("radar.services.ai.generate_action_plan", new_callable=AsyncMock, return_value=PLAN) as gen:
            ids = [await ai_runner.run(project.id, "manual") for _ in range(6)]

        assert gen.await_count == 5
        async with session_factory() as session:
            audits = [await session.get(AuditResult, i) for i in ids]
        assert [a.ai_action_plan is not None for a in audits] == [True] * 5 + [False]
        assert audits[0].ai_action_plan == PLAN

    async def test_free_plan_never_calls_ai(self, ai_runner, make_project, mock_psi):
        project = await make_project(plan="free")
        with patch("radar.services.ai.generate_action_plan", new_callable=AsyncMock) as gen:
            await ai_runner.run(project.id, "manual")
        gen.assert_not_awaited()

    async def test_ai_disabled(self, runner, make_project, mock_psi):
        project = await make_project(plan="agency")
        with patch("radar.services.ai.generate_action_plan", new_callable=AsyncMock) as gen:
            await runner.run(project.id, "manual")
        gen.assert_not_awaited()

    async def test_ai_failure_leaves_plan_null(self, ai_runner, make_project, session_factory, mock_psi):
        project = await make_project(plan="pro")
        with patch(
            "radar.services.ai.generate_action_plan",
            new_callable=AsyncMock,
            side_effect=ValueError("AI returned an empty action plan"),
        ):
            audit_id = await ai_runner.run(project.id, "manual")

        async with session_factory() as session:
            audit = await session.get(AuditResult, audit_id)
        assert audit.ai_action_plan is None
        assert audit.perf_score == 72

    async def test_audit_context_passed_to_ai(self, ai_runner, make_project, mock_psi):
        project = await make_project(plan="pro", strategy="desktop")
        with patch("radar.services.ai.generate_action_plan", new_callable=AsyncMock, return_value=PLAN) as gen:
            await ai_runner.run(project.id, "manual")
        url, strategy, audit = gen.call_args.args
        assert url == "https://example.com"
        assert strategy == "desktop"
        assert audit["lcp"] == 3200.0
        assert "lighthouse_raw" in audit


class TestPsiPayloadVariants:
    async def test_no_field_data(self, runner, make_project, session_factory):
        project = await make_project()
        payload = json.dumps(make_psi_payload(field=False))
        with patch("radar.services.pagespeed._fetch", new_callable=AsyncMock, return_value=(200, payload)):
            audit_id = await runner.run(project.id, "manual")
        async with session_factory() as session:
            audit = await session.get(AuditResult, audit_id)
        assert audit.crux_lcp is None
        assert audit.lcp == 3200.0
