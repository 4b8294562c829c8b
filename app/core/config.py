"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./clinic.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Meta Graph API (WhatsApp Cloud API + Instagram Messaging)
    META_GRAPH_API_URL: str = "https://graph.facebook.com"
    META_API_VERSION: str = "v18.0"
    MESSAGING_HTTP_TIMEOUT: float = 30.0
    MESSAGING_DRY_RUN: bool = False  # Log messages instead of calling Meta

    # Follow-up dispatcher
    FOLLOW_UP_POLL_INTERVAL: int = 60  # seconds between dispatcher cycles
    FOLLOW_UP_BATCH_SIZE: int = 50
    FOLLOW_UP_CLAIM_TIMEOUT_MINUTES: int = 15  # stuck PROCESSING rows go back to PENDING

    # Timezone used to format {data}/{hora} in appointment messages
    CLINIC_TIMEZONE: str = "America/Sao_Paulo"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def graph_base_url(self) -> str:
        """Versioned Meta Graph API base URL."""
        return f"{self.META_GRAPH_API_URL.rstrip('/')}/{self.META_API_VERSION}"


settings = Settings()
