from radar.models.project import User, Project  # noqa: F401
from radar.models.audit import AuditResult, Alert  # noqa: F401
