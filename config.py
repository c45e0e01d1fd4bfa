# ─────────────────────────────────────────────────────────────────
# config.py — Server-side Settings
#
# These are the settings of the dashboard PROCESS, loaded from
# environment variables (prefix DASHBOARD_) or a local .env file.
# They are never tenant data: every tenant brings its own
# credentials by uploading a bundle (see credentials.py).
# ─────────────────────────────────────────────────────────────────

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Example:
        DASHBOARD_SESSION_IDLE_MINUTES=15 uvicorn main:app
    """

    model_config = SettingsConfigDict(
        env_prefix="DASHBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Pulse Dashboard"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # Session cookie
    SESSION_COOKIE_NAME: str = "pulse_session"
    COOKIE_SECURE: bool = False

    # Session lifetime and reaping
    SESSION_IDLE_MINUTES: int = 30
    SESSION_SWEEP_SECONDS: float = 60.0

    # Tenant connection registry
    REGISTRY_SWEEP_SECONDS: float = 60.0
    STORE_CONNECT_TIMEOUT_SECONDS: float = 5.0
    DEFAULT_DATABASE: str = "pulse_dashboard"

    # Health checks
    HEALTH_CHECK_INTERVAL_SECONDS: float = 60.0
    PROBE_TIMEOUT_SECONDS: float = 3.0

    # Simulated deployments
    DEPLOY_DURATION_SECONDS: float = 2.0

    # Upload limits
    MAX_UPLOAD_BYTES: int = 64 * 1024


def get_settings() -> Settings:
    return Settings()
