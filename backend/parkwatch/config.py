from pydantic_settings import BaseSettings
from functools import lru_cache

from parkwatch.exceptions import ConfigurationError


class Settings(BaseSettings):
    env: str = "dev"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./data/parkwatch.db"

    # Holiday Park booking API
    holiday_park_api_url: str = "https://rezerwuj.holidaypark.pl"
    booking_timeout_seconds: float = 30.0

    # Outbound request pacing (milliseconds)
    rate_limit_delay_min_ms: int = 1000
    rate_limit_delay_max_ms: int = 3000
    rate_limit_jitter: bool = True
    rate_limit_adaptive: bool = False

    max_concurrent_requests: int = 1
    max_concurrent_searches: int = 2

    retry_max_attempts: int = 3
    retry_initial_delay_ms: int = 2000
    retry_max_delay_ms: int = 10000

    scheduler_enabled: bool = True
    scheduler_interval_minutes: int = 30
    scheduler_secret: str = ""

    # email | console | ntfy
    notification_backend: str = "console"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    email_from: str = ""

    ntfy_url: str = "http://localhost:8080"
    ntfy_topic: str = "parkwatch"
    base_url: str = "http://localhost:8000"

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ConfigurationError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )
        if self.rate_limit_delay_min_ms > self.rate_limit_delay_max_ms:
            raise ConfigurationError(
                "RATE_LIMIT_DELAY_MIN_MS cannot exceed RATE_LIMIT_DELAY_MAX_MS"
            )

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
