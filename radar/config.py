"""
Performance Radar: configuration via environment variables.

``settings`` is read once from the environment / ``.env``. Which external
systems are wired up (job queue, signing keys, SMTP, AI) is resolved into an
immutable ``Capabilities`` value at startup and handed to the components that
need it.
"""

from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./radar.db",
        description="Async SQLAlchemy DB URL",
    )

    # Public base URL, used for job callbacks and links in alert emails
    app_url: str = Field(default="http://localhost:8000")

    # Google APIs (PageSpeed Insights + CrUX History share one key)
    google_api_key: str = Field(default="", description="Google API key for PSI and CrUX")
    psi_timeout_secs: int = Field(default=90)

    # Cron trigger shared secret
    cron_secret: str = Field(default="", description="Bearer secret for /api/cron/trigger-audits")

    # QStash job queue (optional: audits run inline without a token)
    qstash_token: str = Field(default="")
    qstash_url: str = Field(default="https://qstash.upstash.io")
    qstash_current_signing_key: str = Field(default="")
    qstash_next_signing_key: str = Field(default="")
    qstash_retries: int = Field(default=3)

    # Email / SMTP
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_email: str = Field(default="", description="Sender address for alert emails")
    smtp_app_password: str = Field(default="", description="SMTP password / app password")
    alert_from_name: str = Field(default="Performance Radar")

    # AI: multi-provider support ("anthropic" or "github-models")
    ai_provider: str = Field(
        default="anthropic",
        description="AI provider: 'anthropic' (Claude) or 'github-models' (OpenAI via Azure)",
    )
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude models")
    ai_token: str = Field(default="", description="GitHub PAT for GitHub Models")
    ai_api_url: str = Field(default="", description="Override AI API URL (auto-set per provider if blank)")
    ai_model: str = Field(default="")

    @property
    def ai_effective_url(self) -> str:
        """Resolve API URL based on provider."""
        if self.ai_api_url:
            return self.ai_api_url
        if self.ai_provider == "anthropic":
            return "https://api.anthropic.com/v1/messages"
        return "https://models.inference.ai.azure.com/chat/completions"

    @property
    def ai_effective_model(self) -> str:
        """Resolve model name based on provider."""
        if self.ai_model:
            return self.ai_model
        if self.ai_provider == "anthropic":
            return "claude-sonnet-4-20250514"
        return "gpt-4o"

    @property
    def ai_auth_token(self) -> str:
        """Token for AI API calls, provider-specific."""
        if self.ai_provider == "anthropic":
            return self.anthropic_api_key
        return self.ai_token

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


@dataclass(frozen=True)
class Capabilities:
    """Which optional external systems are configured for this process."""

    app_url: str
    cron_secret: str | None = None
    qstash_token: str | None = None
    qstash_url: str = "https://qstash.upstash.io"
    qstash_retries: int = 3
    current_signing_key: str | None = None
    next_signing_key: str | None = None
    email_enabled: bool = False
    ai_enabled: bool = False

    @property
    def queue_enabled(self) -> bool:
        return bool(self.qstash_token)

    @property
    def verify_signatures(self) -> bool:
        return bool(self.current_signing_key or self.next_signing_key)


def resolve_capabilities(s: Settings) -> Capabilities:
    return Capabilities(
        app_url=s.app_url.rstrip("/"),
        cron_secret=s.cron_secret or None,
        qstash_token=s.qstash_token or None,
        qstash_url=s.qstash_url.rstrip("/"),
        qstash_retries=s.qstash_retries,
        current_signing_key=s.qstash_current_signing_key or None,
        next_signing_key=s.qstash_next_signing_key or None,
        email_enabled=bool(s.smtp_email and s.smtp_app_password),
        ai_enabled=bool(s.ai_auth_token),
    )


@lru_cache
def get_capabilities() -> Capabilities:
    """FastAPI dependency: capabilities resolved once per process."""
    return resolve_capabilities(settings)
