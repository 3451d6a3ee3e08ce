"""Application configuration with environment variables."""

from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.1.0"

    # Database
    DATABASE_URL: str
    AUTO_MIGRATE: bool = False

    # Field-level encryption for provider secrets (Fernet key)
    DATA_ENCRYPTION_KEY: str = ""

    # Internal scheduled endpoints (external cron)
    INTERNAL_SECRET: str = ""

    # CallTrackingMetrics (call provider)
    CTM_API_BASE: str = "https://api.calltrackingmetrics.com"
    CTM_MAX_CALLS: int = 200
    CTM_CLASSIFY_LIMIT: int = 40
    CTM_FULL_SYNC_DAYS: int = 365
    CTM_PER_PAGE: int = 100
    CTM_REQUEST_TIMEOUT_SECONDS: float = 30.0
    CTM_SALE_TIMEOUT_SECONDS: float = 20.0
    CTM_SYNC_CRON: str = "*/15 * * * *"

    # CRM conversion endpoint (form submissions)
    CTM_CONVERSION_WEBHOOK_URL: str = ""

    # AI classification
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    AI_CLASSIFIER_MODEL: str = ""
    AI_TIMEOUT_SECONDS: float = 60.0
    DEFAULT_AI_PROMPT: str = (
        "You are an assistant that classifies call transcripts for service businesses. "
        "Analyze the conversation and determine the caller intent."
    )

    # Outbound email (Mailgun)
    MAILGUN_API_KEY: str = ""
    MAILGUN_DOMAIN: str = ""
    MAILGUN_API_BASE: str = "https://api.mailgun.net/v3"
    MAILGUN_DEFAULT_FROM: str = ""
    EMAIL_TIMEOUT_SECONDS: float = 30.0

    # Form submission job queue
    RETRY_BASE_DELAY_MS: int = 5000
    MAX_JOB_ATTEMPTS: int = 5
    FORM_JOB_BATCH_SIZE: int = 10

    # Task automations and cleanup
    TASK_ARCHIVE_RETENTION_DAYS: int = 30
    SERVICE_REDACTION_DAYS: int = 90
    OPERATIONAL_TIMEZONE: str = "America/New_York"

    # Detached work pool
    BACKGROUND_MAX_PENDING: int = 100

    # Internal trigger endpoints (requests per minute per caller; 0 disables)
    RATE_LIMIT_INTERNAL: int = 30

    # App links used in notifications
    FRONTEND_URL: str = "http://localhost:3000"

    @property
    def retry_base_delay_seconds(self) -> float:
        """Base backoff delay for failed form jobs, in seconds."""
        return self.RETRY_BASE_DELAY_MS / 1000

    @property
    def operational_tz(self) -> ZoneInfo:
        return ZoneInfo(self.OPERATIONAL_TIMEZONE)

    @property
    def classifier_model(self) -> str:
        return self.AI_CLASSIFIER_MODEL or self.OPENAI_MODEL

    @property
    def mailgun_domain(self) -> str:
        """Mailgun domain, expanding bare sandbox names to the mailgun.org host."""
        domain = self.MAILGUN_DOMAIN.strip()
        if domain and "." not in domain:
            return f"{domain}.mailgun.org"
        return domain


settings = Settings()
