"""
Performance Radar: error taxonomy for the audit pipeline.

- ``AuditFailure``: the PageSpeed API rejected the request or returned
  unusable data. Terminal for the cycle; the job queue must not retry it.
- ``ProjectNotFound``: stale or forged project id. Terminal, no retry.
- ``QuotaExceeded``: a plan limit was hit. Terminal and user-visible.

Anything else escaping the runner is treated as transient infrastructure
failure and left for the queue to retry.
"""


class AuditFailure(Exception):
    """Permanent failure of the external audit call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProjectNotFound(LookupError):
    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class QuotaExceeded(Exception):
    """A plan limit blocks the requested action."""

    def __init__(self, message: str, limit: int):
        super().__init__(message)
        self.message = message
        self.limit = limit
