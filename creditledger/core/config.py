from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return default.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or default.copy()
    except ValueError:
        return default.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # Store: "mongo" (replica set, transactions) or "memory" (single process)
    store_backend: str = Field(default="mongo", alias="STORE_BACKEND")
    mongodb_uri: str = Field(default="mongodb://localhost:27017/?replicaSet=rs0", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="creditledger", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Identity: "firebase" | "google" | "session"
    identity_provider: str = Field(default="firebase", alias="IDENTITY_PROVIDER")
    firebase_project_id: str = Field(default="", alias="FIREBASE_PROJECT_ID")
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    session_max_age_seconds: int = 7 * 24 * 3600
    admin_emails_raw: str = Field(default="", alias="ADMIN_EMAILS", description="Comma-separated or JSON list")

    # Payment processor webhook (HMAC-SHA256)
    payment_webhook_secret: str = Field(default="", alias="PAYMENT_WEBHOOK_SECRET")

    # Notifications: "log" | "arq"
    notifications_backend: str = Field(default="log", alias="NOTIFICATIONS_BACKEND")
    notification_webhook_url: str = Field(default="", alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = 5.0
    notification_publish_timeout_seconds: float = 1.0

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_list(getattr(self, "cors_origins_raw", None), _DEFAULT_CORS)

    @property
    def admin_emails(self) -> List[str]:
        return [e.lower() for e in _parse_list(getattr(self, "admin_emails_raw", None), [])]

    # Ledger policy
    welcome_bonus_credits: int = 100
    ledger_max_retries: int = 5
    ledger_page_max: int = 200
    merge_entitlement_weight: int = 50
    daily_streak_length: int = 3
    default_timezone: str = "UTC"


@lru_cache
def get_settings() -> Settings:
    return Settings()
