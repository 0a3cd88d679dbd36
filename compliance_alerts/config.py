from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ==============================
    # Application
    # ==============================
    APP_NAME: str = "Compliance Alert Engine"
    ENVIRONMENT: str = "local"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # ==============================
    # Database
    # ==============================
    DATABASE_URL: str = "sqlite:///./compliance_alerts.db"

    # ==============================
    # Logging
    # ==============================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # ==============================
    # Security
    # ==============================
    API_KEYS: Optional[str] = None
    API_KEY_HEADER: str = "X-API-Key"
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None
    JWT_REQUIRED: bool = False
    ACK_TOKEN_SECRET: str = "change-me"

    # ==============================
    # Email (Resend)
    # ==============================
    RESEND_API_URL: str = "https://api.resend.com/emails"
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM_EMAIL: str = "alerts@compliance-alerts.local"
    RESEND_FROM_NAME: str = "Compliance Calendar"
    RESEND_WEBHOOK_SECRET: Optional[str] = None

    # ==============================
    # SMS (Twilio)
    # ==============================
    TWILIO_API_BASE_URL: str = "https://api.twilio.com/2010-04-01"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None
    TWILIO_STATUS_CALLBACK_URL: Optional[str] = None
    TWILIO_VALIDATE_SIGNATURE: bool = False

    # ==============================
    # Delivery
    # ==============================
    DELIVERY_TIMEOUT_SECONDS: float = 30.0
    DELIVERY_MAX_ATTEMPTS: int = 3
    DELIVERY_BACKOFF_SECONDS: str = "1,2,4"
    DISPATCH_BATCH_SIZE: int = 200
    DISPATCH_MAX_WORKERS: int = 8
    DISPATCH_CLAIM_TIMEOUT_SECONDS: int = 600

    # ==============================
    # Rate limiting
    # ==============================
    SMS_RATE_LIMIT_PER_ORG: int = 30
    SMS_RATE_LIMIT_WINDOW_SECONDS: int = 60

    # ==============================
    # Scheduling & escalation
    # ==============================
    SCHEDULE_LOOKBACK_MINUTES: int = 15
    ESCALATION_GRACE_HOURS: float = 4.0

    # ==============================
    # Job runner
    # ==============================
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_RUN_AFTER: str = "02:00"
    SCHEDULER_POLL_SECONDS: int = 30
    SCHEDULER_HEARTBEAT_SECONDS: int = 30
    SCHEDULER_STALE_SECONDS: int = 900
    SCHEDULER_RETRY_SECONDS: int = 300
    SCHEDULER_MAX_RETRIES: int = 3
    SCHEDULER_TZ: str = "utc"
    DISPATCH_INTERVAL_SECONDS: int = 900
    ESCALATION_SWEEP_SECONDS: int = 900

    @property
    def backoff_schedule(self) -> list[float]:
        delays = []
        for value in (self.DELIVERY_BACKOFF_SECONDS or "").split(","):
            value = value.strip()
            if value:
                delays.append(float(value))
        return delays or [1.0, 2.0, 4.0]


@lru_cache
def get_settings() -> Settings:
    """Cached settings loader (once per process)."""
    return Settings()


__all__ = ["Settings", "get_settings"]
