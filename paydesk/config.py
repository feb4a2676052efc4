"""Configuration management using Pydantic Settings"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./paydesk.db"

    # Service
    service_name: str = "paydesk"
    log_level: str = "INFO"
    environment: str = "production"  # production | development

    # Notification scheduler
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float | None = None  # Overrides the per-environment default
    upcoming_window_days: int = 30
    upcoming_scan_limit: int = 50
    cleanup_scan_limit: int = 500
    low_stock_threshold: int = 1

    # Event channel
    event_buffer_size: int = 200

    # Ledger policy applied at the HTTP boundary
    enforce_sequential_payments: bool = True

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev")

    @property
    def effective_scheduler_interval(self) -> float:
        """Seconds between the end of one scan and the start of the next"""
        if self.scheduler_interval_seconds is not None:
            return self.scheduler_interval_seconds
        return 30.0 if self.is_development else 300.0


settings = Settings()
