"""Application configuration using pydantic-settings.

Values come from the environment (or a local .env file). Missing or malformed
required values are collected and reported together at startup.
"""

import re
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# AES-256 key encoded as hex
_SECRET_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Required environment variables:
    - SECRET_KEY: 64 hex chars, the AES-256 key protecting stored tokens
    - WORKS_CLIENT_ID: NAVER WORKS OAuth client ID
    - WORKS_CLIENT_SECRET: NAVER WORKS OAuth client secret
    - WORKS_REDIRECT_URI: Callback URI registered for the OAuth client
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    port: int = 8080
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # AES-256 key for tokens at rest
    secret_key: str = ""

    # Secret storage
    database_url: str = "sqlite+aiosqlite:///./worksbot.db"
    database_timeout: float = 10.0
    # Write access + refresh token in one transaction
    atomic_token_writes: bool = False

    # NAVER WORKS OAuth client
    works_client_id: str = ""
    works_client_secret: str = ""
    works_redirect_uri: str = ""
    works_scope: str = "bot bot.message"
    works_token_url: str = "https://auth.worksmobile.com/oauth2/v2.0/token"
    works_authorize_url: str = "https://auth.worksmobile.com/oauth2/v2.0/authorize"

    # Interactive login account used by the browser tier
    works_admin_id: str = ""
    works_admin_password: str = ""

    # Bot API
    works_api_base_url: str = "https://www.worksapis.com/v1.0"
    works_bot_id: str = ""
    # Receives a notice whenever the browser tier re-issues the tokens (optional)
    works_notify_user_id: str = ""

    # Token refresh
    http_timeout: float = 30.0
    grant_attempts: int = 3
    grant_retry_wait_seconds: float = 0.0
    refresh_wait_timeout: float = 60.0

    # Headless browser (seconds)
    browser_executable_path: str = ""
    browser_headless: bool = True
    browser_selector_timeout: float = 10.0
    browser_login_timeout: float = 30.0
    browser_redirect_timeout: float = 30.0
    browser_session_timeout: float = 120.0
    browser_close_timeout: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def has_browser_login(self) -> bool:
        """Whether the interactive login tier has credentials to work with."""
        return bool(self.works_admin_id and self.works_admin_password)

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        errors = []

        if not self.secret_key:
            errors.append("SECRET_KEY must be set")
        elif not _SECRET_KEY_PATTERN.match(self.secret_key):
            errors.append("SECRET_KEY must be 64 hex characters (32-byte AES-256 key)")

        if not self.works_client_id:
            errors.append("WORKS_CLIENT_ID must be set")

        if not self.works_client_secret:
            errors.append("WORKS_CLIENT_SECRET must be set")

        if not self.works_redirect_uri:
            errors.append("WORKS_REDIRECT_URI must be set")

        if self.is_production and not self.works_bot_id:
            errors.append("WORKS_BOT_ID must be set in production")

        if errors:
            raise ValueError("Configuration errors:\n  - " + "\n  - ".join(errors))

        return self

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of: {allowed}")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of: {allowed}")
        return v_upper

    @field_validator("grant_attempts")
    @classmethod
    def validate_grant_attempts(cls, v: int) -> int:
        """At least one grant attempt is required."""
        if v < 1:
            raise ValueError("grant_attempts must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
