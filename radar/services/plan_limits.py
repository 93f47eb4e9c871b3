"""
Plan Policy: quota and feature limits per subscription tier.

Pure lookups over an immutable table. Every quota check in the system
(project creation, manual runs, scheduling, AI plans, alert emails,
history retention) goes through ``get_plan_limits``.
"""

from dataclasses import dataclass
from types import MappingProxyType

UNLIMITED = -1


@dataclass(frozen=True)
class PlanLimits:
    max_projects: int
    manual_runs_per_month: int  # -1 = unlimited
    scheduled_runs: bool
    hourly_runs: bool
    email_alerts: bool
    history_days: int
    ai_action_plans_per_month: int  # 0 = disabled, -1 = unlimited

    def allows_schedule(self, schedule: str) -> bool:
        if schedule == "manual":
            return True
        if schedule == "hourly":
            return self.scheduled_runs and self.hourly_runs
        return self.scheduled_runs


PLAN_LIMITS = MappingProxyType({
    "free": PlanLimits(
        max_projects=1,
        manual_runs_per_month=10,
        scheduled_runs=False,
        hourly_runs=False,
        email_alerts=False,
        history_days=7,
        ai_action_plans_per_month=0,
    ),
    "starter": PlanLimits(
        max_projects=5,
        manual_runs_per_month=UNLIMITED,
        scheduled_runs=True,
        hourly_runs=False,
        email_alerts=True,
        history_days=30,
        ai_action_plans_per_month=5,
    ),
    "pro": PlanLimits(
        max_projects=20,
        manual_runs_per_month=UNLIMITED,
        scheduled_runs=True,
        hourly_runs=True,
        email_alerts=True,
        history_days=90,
        ai_action_plans_per_month=30,
    ),
    "agency": PlanLimits(
        max_projects=100,
        manual_runs_per_month=UNLIMITED,
        scheduled_runs=True,
        hourly_runs=True,
        email_alerts=True,
        history_days=365,
        ai_action_plans_per_month=UNLIMITED,
    ),
})


def get_plan_limits(plan: str | None) -> PlanLimits:
    """Limits for a tier name. Unknown or missing tiers get the free plan."""
    return PLAN_LIMITS.get(plan or "free", PLAN_LIMITS["free"])


def has_quota_left(limit: int, used: int) -> bool:
    """True when ``used`` is still under ``limit`` (-1 unlimited, 0 disabled)."""
    if limit == UNLIMITED:
        return True
    return used < limit
