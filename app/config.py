from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Monday.com settings (system of record)
    MONDAY_API_URL: str = "https://api.monday.com/v2"
    MONDAY_API_TOKEN: str | None = None
    MONDAY_API_VERSION: str = "2024-10"  # Required for MirrorValue support
    MONDAY_BOARD_ID_DELIVERIES: str = ""
    MONDAY_BOARD_ID_FREELANCERS: str = ""
    MONDAY_BOARD_ID_WAREHOUSE: str = ""
    MONDAY_ACCOUNT_SLUG: str = "oooshtours"

    # HireHop settings (equipment line items)
    HIREHOP_DOMAIN: str = "myhirehop.com"
    HIREHOP_API_TOKEN: str | None = None

    # =================================================================
    # RETRY SETTINGS - applies to every third-party call
    # =================================================================
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0  # 1s, then 2s, then 4s
    RETRY_STATUS_CODES: list[int] = [429, 500, 502, 503, 504]
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # =================================================================
    # ESCALATION SETTINGS
    # =================================================================
    BUSINESS_TIMEZONE: str = "Europe/London"
    BUSINESS_HOURS_START: int = 7  # 7am
    BUSINESS_HOURS_END: int = 22  # 10pm
    ESCALATION_INTERVAL_MINUTES: int = 30
    ESCALATION_THRESHOLD_HOURS: list[float] = [2, 6, 14]
    ESCALATION_CLAIM_TTL_SECONDS: int = 3600
    REMINDER_RATE_LIMIT_PER_HOUR: int = 10
    STAFF_ALERT_EMAIL: str = "info@oooshtours.co.uk"

    # Email (SMTP) settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: float = 30.0
    EMAIL_FROM: str = "Ooosh Tours <noreply@oooshtours.co.uk>"

    # Portal links and branding
    APP_URL: str = "https://ooosh-freelancer-portal.netlify.app"
    LOGO_URL: str | None = None

    # =================================================================
    # COMPLETION SETTINGS
    # =================================================================
    MAX_COMPLETION_PHOTOS: int = 5
    BACKGROUND_FUNCTION_SECRET: str | None = None
    BACKGROUND_DISPATCH_URL: str | None = None  # None = in-process queue
    BACKGROUND_QUEUE_SIZE: int = 100
    BACKGROUND_WORKERS: int = 2

    # Caller identity
    SESSION_SECRET: str | None = None
    WAREHOUSE_PIN: str | None = None

    # Optional shared claim store for overlapping scheduler runs
    REDIS_URL: str | None = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def app_url(self) -> str:
        """Portal base URL without trailing slash."""
        return self.APP_URL.rstrip("/")

    def logo_url(self) -> str:
        if self.LOGO_URL:
            return self.LOGO_URL
        return f"{self.app_url()}/ooosh-tours-logo-small.png"

    def background_secret(self) -> str | None:
        """Shared secret for service-to-service calls."""
        return self.BACKGROUND_FUNCTION_SECRET

    def escalation_thresholds(self) -> dict[int, float]:
        """
        Map escalation level -> minimum hours since scheduled job time.
        Level numbering starts at 1.
        """
        return {
            level: float(hours)
            for level, hours in enumerate(self.ESCALATION_THRESHOLD_HOURS, start=1)
        }

    def monday_item_url(self, board_id: str, item_id: str) -> str:
        return f"https://{self.MONDAY_ACCOUNT_SLUG}.monday.com/boards/{board_id}/pulses/{item_id}"


settings = Settings()

# =================================================================
# QUICK CONFIGURATION REFERENCE
# =================================================================
"""
Reminder schedule (hours after job time):

DEFAULT:
    ESCALATION_THRESHOLD_HOURS=[2,6,14]   # 2h, then +4h, then +8h

GENTLE:
    ESCALATION_THRESHOLD_HOURS=[4,12,24]

Background completion work:

IN-PROCESS (single instance):
    BACKGROUND_DISPATCH_URL unset, BACKGROUND_WORKERS=2

SEPARATE WORKER (shared secret auth):
    BACKGROUND_DISPATCH_URL=https://.../internal/completion-background
    BACKGROUND_FUNCTION_SECRET=...
"""
