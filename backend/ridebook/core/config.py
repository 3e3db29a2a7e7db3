from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Any, ClassVar
from pathlib import Path
import os


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"

    # Database URL
    # Use an absolute path so running the app from different directories
    # (e.g., repo root or backend/) always resolves the same DB file.
    BASE_DIR: ClassVar[Path] = Path(__file__).resolve().parents[2]
    SQLALCHEMY_DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'ridebook.db'}"

    LOG_LEVEL: str = "INFO"

    # Fallback platform cut when SYSTEM_COMMISSION_PERCENTAGE is not stored
    DEFAULT_COMMISSION_PERCENTAGE: float = 30.0
    SETTINGS_CACHE_TTL_SECONDS: int = 60

    # Invoice numbering retry budgets
    INVOICE_NUMBER_LOOKUP_ATTEMPTS: int = 3
    INVOICE_CREATE_MAX_ATTEMPTS: int = 10

    # Background jobs (auto-cancel + driver reminders)
    SCHEDULED_JOBS_ENABLED: bool = True
    SCHEDULED_JOB_INTERVAL_SECONDS: int = 300
    AUTO_CANCEL_GRACE_MINUTES: int = 30
    REMINDER_LEAD_MINUTES: int = 120
    # Half-width of the reminder window around the lead time
    REMINDER_WINDOW_MINUTES: int = 5

    # SMTP email settings
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "no-reply@localhost"

    # Twilio SMS; SMS sending is skipped while any of these is blank
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_FROM_NUMBER: str = ""

    # Recipient of system cancellation reports
    ADMIN_REPORT_EMAIL: str = ""

    # Off-request notification delivery
    NOTIFICATION_WORKERS: int = 4
    NOTIFICATION_ATTEMPTS: int = 2
    NOTIFICATION_RETRY_BACKOFF_SECONDS: float = 1.0
    NOTIFICATION_DEAD_LETTER_SIZE: int = 500

    @field_validator(
        "SMTP_HOST",
        "SMTP_FROM",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_FROM_NUMBER",
        "ADMIN_REPORT_EMAIL",
        mode="before",
    )
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("LOG_LEVEL", mode="before")
    def upper_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper() or "INFO"
        return v

    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=True,
    )


def load_settings() -> "Settings":
    return Settings(_env_file=os.getenv("ENV_FILE", str(Path(__file__).resolve().parents[3] / ".env")))


settings = load_settings()
