# Centralised application configuration
# (environment variables, constants, timeouts).

import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


class Settings:
    APP_NAME = os.getenv("APP_NAME", "QR Session Auth")
    ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

    # Base URL embedded in the QR payload; derived from the request when empty
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
    QR_SCHEME = os.getenv("QR_SCHEME", "tana")

    SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "300"))  # 5 Minutes
    SESSION_RETENTION_SECONDS = int(os.getenv("SESSION_RETENTION_SECONDS", "600"))
    GC_INTERVAL_SECONDS = int(os.getenv("GC_INTERVAL_SECONDS", "30"))
    POLL_MIN_INTERVAL_MS = int(os.getenv("POLL_MIN_INTERVAL_MS", "1000"))
    SSE_INTERVAL_MS = int(os.getenv("SSE_INTERVAL_MS", "500"))

    SESSION_TOKEN_SECRET = os.getenv("SESSION_TOKEN_SECRET", "dev-change-me")
    SESSION_TOKEN_ISSUER = os.getenv("SESSION_TOKEN_ISSUER", "qrauth-local")
    SESSION_TOKEN_AUDIENCE = os.getenv("SESSION_TOKEN_AUDIENCE", "qrauth-browser")
    SESSION_TOKEN_TTL_SECONDS = int(os.getenv("SESSION_TOKEN_TTL_SECONDS", str(7 * 24 * 60 * 60)))
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "tana_session_token")

    # JSON file: { "<user_id>": <public JWK> }
    DEVICE_KEYS_FILE = os.getenv("DEVICE_KEYS_FILE", "")

    RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "false")
    MAX_REQUESTS_PER_MINUTE = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "30"))

    # CSV audit trail of session events, disabled when empty
    EVENT_LOG_FILE = os.getenv("EVENT_LOG_FILE", "")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


settings = Settings()
