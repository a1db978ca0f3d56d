from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings loaded from environment variables (.env)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "formdesk"
    ENV: str = "dev"

    # SECURITY
    SECRET_KEY: str = "CHANGE_ME"
    REFRESH_SECRET_KEY: str = "CHANGE_ME_TOO"
    ACCESS_TOKEN_MAX_AGE_SECONDS: int = 15 * 60  # 15m
    REFRESH_TOKEN_MAX_AGE_SECONDS: int = 60 * 60 * 24 * 7  # 7d
    COOKIE_SECURE: bool = False   # set True behind HTTPS
    COOKIE_SAMESITE: str = "lax"
    CSRF_COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24  # 24h

    # CORS
    CORS_ALLOW_ORIGINS: str = "*"  # "*" or "https://a.com,https://b.com"
    CORS_ALLOW_CREDENTIALS: bool = False

    # DATABASE / CACHE
    MYSQL_DSN: str
    REDIS_URL: str = "redis://127.0.0.1:6379/0"  # empty string disables redis
    SETTINGS_CACHE_TTL_SECONDS: int = 30

    # RATE LIMIT (login / refresh, failed attempts per client ip)
    AUTH_RATE_LIMIT: int = 100
    AUTH_RATE_WINDOW_SECONDS: int = 15 * 60

    # RATE LIMIT (every request per client ip; /health is exempt)
    API_RATE_LIMIT: int = 1000
    API_RATE_WINDOW_SECONDS: int = 15 * 60
    MAX_BODY_BYTES: int = 2 * 1024 * 1024  # 2 MB

    # number of reverse proxies in front of the app; X-Forwarded-For is ignored when 0.
    # set 1 behind a single nginx / load balancer
    TRUSTED_PROXY_COUNT: int = 0

    # SYSTEM SETTINGS
    DEFAULT_HEARTBEAT_WINDOW_HOURS: float = 1.0
    REPORT_TIMEZONE: str = "Asia/Kolkata"

    # GOOGLE SHEETS
    GOOGLE_SERVICE_ACCOUNT_JSON: str = ""  # service account key (json text); empty disables sync
    SHEETS_SYNC_TIMEOUT_SECONDS: float = 5.0

    # LOGGING
    LOG_LEVEL: str = "INFO"
    ERROR_LOG_TO_DB: bool = True
    ERROR_LOG_RETENTION_DAYS: int = 30

    # DEV BOOTSTRAP
    AUTO_CREATE_SUPERADMIN: bool = True
    DEFAULT_SUPERADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_SUPERADMIN_PASSWORD: str = "admin123"
    DEFAULT_SUPERADMIN_NAME: str = "Administrator"

    def cors_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if not s or s == "*":
            return ["*"]
        return [x.strip() for x in s.split(",") if x.strip()]

    @property
    def is_production(self) -> bool:
        return (self.ENV or "").strip().lower() in ("prod", "production")


settings = Settings()
