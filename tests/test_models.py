"""
Tests for ORM models: defaults, serialization, JSON nulls.
"""

from sqlalchemy import select

from radar.models import AuditResult, User


class TestUser:
    async def test_defaults(self, db_session):
        db_session.add(User(id="user_9", email="nine@example.com"))
        await db_session.commit()
        user = await db_session.get(User, "user_9")
        assert user.plan == "free"
        assert user.created_at is not None


class TestProject:
    async def test_defaults(self, make_project):
        project = await make_project()
        assert project.id
        assert project.strategy == "mobile"
        assert project.schedule == "manual"
        assert project.threshold_for("lcp") is None

    async def test_to_dict(self, make_project):
        project = await make_project(alert_cls=0.15)
        data = project.to_dict()
        assert data["alert_cls"] == 0.15
        assert data["next_audit_at"] is None
        assert data["url"] == "https://example.com"


class TestAuditResult:
    async def test_share_tokens_unique(self, make_project, db_session):
        project = await make_project()
        a = AuditResult(project_id=project.id, strategy="mobile")
        b = AuditResult(project_id=project.id, strategy="mobile")
        db_session.add_all([a, b])
        await db_session.commit()
        assert a.share_token and b.share_token
        assert a.share_token != b.share_token

    async def test_absent_blobs_are_sql_null(self, make_project, db_session):
        project = await make_project()
        db_session.add(AuditResult(project_id=project.id, strategy="mobile", ai_action_plan=None))
        await db_session.commit()
        result = await db_session.execute(
            select(AuditResult.id).where(AuditResult.ai_action_plan.is_(None))
        )
        assert len(result.all()) == 1

    async def test_to_dict_hides_raw_by_default(self, make_project, db_session):
        project = await make_project()
        audit = AuditResult(
            project_id=project.id,
            strategy="desktop",
            perf_score=88,
            lighthouse_raw={"audits": {}},
            crux_history_raw={"collectionPeriods": []},
        )
        db_session.add(audit)
        await db_session.commit()

        data = audit.to_dict()
        assert data["perf_score"] == 88
        assert data["crux_history"] == {"collectionPeriods": []}
        assert "lighthouse_raw" not in data
        assert audit.to_dict(include_raw=True)["lighthouse_raw"] == {"audits": {}}
