"""
Performance Radar: Pydantic request/response schemas.
"""

from enum import Enum

from pydantic import BaseModel, Field


class Strategy(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"


class Schedule(str, Enum):
    MANUAL = "manual"
    DAILY = "daily"
    HOURLY = "hourly"


class ProjectCreateRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    name: str | None = Field(None, max_length=255)
    strategy: Strategy = Strategy.MOBILE


class ScheduleUpdateRequest(BaseModel):
    schedule: Schedule


class AlertThresholdsRequest(BaseModel):
    alert_lcp: float | None = Field(None, alias="alertLcp", ge=0)
    alert_cls: float | None = Field(None, alias="alertCls", ge=0)
    alert_inp: float | None = Field(None, alias="alertInp", ge=0)

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    queue: bool = False
    email: bool = False
    ai: bool = False
