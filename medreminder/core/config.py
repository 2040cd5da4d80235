from typing import List, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
import os


class Settings(BaseSettings):
    # Service configuration
    PROJECT_NAME: str = "Medication Reminder Service"
    VERSION: str = "0.1.0"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8000

    # Database (SQLite for local dev, PostgreSQL in deployment)
    DATABASE_URL: str = "sqlite:///./medreminder.db"

    # Timezone used to interpret HH:MM reminder times
    DEFAULT_TIMEZONE: str = "Asia/Kolkata"

    # FCM
    FCM_PROJECT_ID: Optional[str] = None
    FCM_CREDENTIALS_JSON: Optional[str] = None  # path or inline JSON via env

    # SMTP
    SMTP_SERVER: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: Optional[str] = None
    APP_URL: str = "http://localhost:3000/medications"

    # Scheduling / lifecycle
    RESUME_THRESHOLD_SECONDS: float = 120.0
    FOCUS_DEBOUNCE_SECONDS: float = 1.0
    WATCHDOG_INTERVAL_SECONDS: float = 30.0
    WATCHDOG_ENABLED: bool = True
    SEND_CONFIRMATIONS: bool = True

    # Metrics
    METRICS_ENABLED: bool = True

    # API Security
    VALID_API_KEYS: List[str] = []
    REQUIRE_API_KEY: bool = False

    model_config = SettingsConfigDict(
        env_prefix="REMINDER_", case_sensitive=True, env_file=".env", extra="ignore"
    )

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_postgres_scheme(cls, v: str) -> str:
        # Heroku/Railway style URLs use the legacy scheme SQLAlchemy no longer accepts
        if isinstance(v, str) and v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        # Parse API keys from a plain env var if provided (JSON list or comma-separated)
        if not self.VALID_API_KEYS:
            api_keys_env = os.getenv("REMINDER_VALID_API_KEYS_CSV")
            if api_keys_env:
                try:
                    self.VALID_API_KEYS = json.loads(api_keys_env)
                except (json.JSONDecodeError, TypeError):
                    self.VALID_API_KEYS = [key.strip() for key in api_keys_env.split(",") if key.strip()]

        # Zoho and friends reject relaying when FROM differs from the login
        if not self.FROM_EMAIL and self.SMTP_USERNAME:
            self.FROM_EMAIL = self.SMTP_USERNAME
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_SERVER and self.SMTP_USERNAME and self.SMTP_PASSWORD and self.FROM_EMAIL)


settings = Settings()
