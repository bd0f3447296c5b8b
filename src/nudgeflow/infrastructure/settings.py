"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Nudgeflow"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Store
    store_backend: Literal["sqlite", "postgres"] = "sqlite"
    sqlite_db_path: str = "./data/nudgeflow.db"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: SecretStr = Field(default=SecretStr("postgres"))
    postgres_db: str = "nudgeflow"

    # Mail
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    sent_folder: str = "[Gmail]/Sent Mail"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    sendgrid_api_key: SecretStr | None = None
    sendgrid_base_url: str = "https://api.sendgrid.com/v3"
    fetch_limit: int = 20
    lookback_days: int = 30
    fetch_overlap_minutes: int = 60

    # LLM Configuration (vendor nudge drafting)
    llm_provider: Literal["openai", "groq", "anthropic", "local", "none"] = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    groq_api_key: SecretStr | None = None
    openai_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None

    # Local vLLM (for local inference)
    vllm_base_url: str = "http://localhost:8000/v1"
    vllm_model_name: str = "gpt-oss-20b"

    # Reminder policy
    working_hours_timezone: str = "Asia/Kolkata"
    working_hours_start: int = 9
    working_hours_end: int = 19
    working_days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5])
    self_reminder_cooldown_minutes: int = 360
    short_interval_threshold_minutes: int = 60
    short_cooldown_minutes: int = 30
    long_cooldown_minutes: int = 360
    max_vendor_nudges: int = 3

    # Health monitor
    monitor_check_interval_minutes: int = 10
    monitor_digest_hour: int = 9
    monitor_digest_minute: int = 0
    monitor_staleness_minutes: int = 30
    monitor_stuck_minutes: int = 120
    monitor_alert_cooldown_minutes: int = 60
    monitor_email_spike_per_hour: int = 50
    monitor_self_reminder_saturation: int = 5
    admin_alert_email: str = ""

    # Scheduler
    enable_scheduler: bool = True
    enable_monitor: bool = True

    @computed_field
    @property
    def postgres_dsn(self) -> str:
        """Construct PostgreSQL connection string."""
        password = self.postgres_password.get_secret_value()
        return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
