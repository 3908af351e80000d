"""Application configuration settings."""
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional
import logging


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./reminders.db"
    db_echo: bool = False

    # Reminder Settings
    reminder_lead_time_days: int = 7
    reminder_send_time: str = "09:00"
    reminder_default_channels: List[str] = ["mail"]
    reminder_mail_enabled: bool = True

    # Channel Endpoints (per-user settings take precedence)
    reminder_slack_webhook: Optional[str] = None
    reminder_discord_webhook: Optional[str] = None
    reminder_push_endpoint: Optional[str] = None
    reminder_push_token: Optional[str] = None

    # Mail Transport
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_from_address: str = "reminders@localhost"

    # Webhook Transport
    webhook_timeout: int = 30
    webhook_max_retries: int = 0
    webhook_retry_delays: List[int] = [1, 2, 5]

    # Rate Limiting: channel -> {"limit": attempts, "window_seconds": seconds}
    rate_limits: Dict[str, Dict[str, int]] = {
        "mail": {"limit": 50, "window_seconds": 3600},
        "slack": {"limit": 10, "window_seconds": 60},
        "discord": {"limit": 10, "window_seconds": 60},
        "push": {"limit": 5, "window_seconds": 60},
    }
    rate_limit_cleanup_grace_minutes: int = 5

    # Channel Health
    health_failures_per_step: int = 1
    health_recovery_successes: int = 3

    # Scheduler Settings
    scheduler_enabled: bool = True
    scheduler_pool_size: int = 4

    # Application Settings
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def rate_limit_for(self, channel: str) -> Dict[str, int]:
        """Get the rate limit policy for a channel.

        Unknown channels get a conservative 10 attempts per minute.
        """
        return self.rate_limits.get(channel, {"limit": 10, "window_seconds": 60})

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the standard format."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
