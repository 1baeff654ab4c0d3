"""Tests for Settings validation."""

import pytest
from pydantic import ValidationError

from tests.fakes import TEST_SECRET_KEY
from worksbot_server.config import Settings

REQUIRED = {
    "secret_key": TEST_SECRET_KEY,
    "works_client_id": "client-id",
    "works_client_secret": "client-secret",
    "works_redirect_uri": "https://bot.test/callback",
}

ENV_VARS = [
    "SECRET_KEY",
    "WORKS_CLIENT_ID",
    "WORKS_CLIENT_SECRET",
    "WORKS_REDIRECT_URI",
    "WORKS_BOT_ID",
    "ENVIRONMENT",
    "GRANT_ATTEMPTS",
    "LOG_LEVEL",
    "WORKS_ADMIN_ID",
    "WORKS_ADMIN_PASSWORD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def make_settings(**overrides: object) -> Settings:
    return Settings(_env_file=None, **{**REQUIRED, **overrides})  # type: ignore[arg-type]


class TestSettings:
    def test_defaults(self) -> None:
        settings = make_settings()

        assert settings.works_scope == "bot bot.message"
        assert settings.works_token_url == "https://auth.worksmobile.com/oauth2/v2.0/token"
        assert settings.grant_attempts == 3
        assert settings.refresh_wait_timeout == 60.0
        assert settings.browser_selector_timeout == 10.0
        assert settings.atomic_token_writes is False
        assert not settings.is_production

    def test_missing_required_values_are_reported_together(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None)  # type: ignore[call-arg]

        message = str(exc_info.value)
        for name in ("SECRET_KEY", "WORKS_CLIENT_ID", "WORKS_CLIENT_SECRET", "WORKS_REDIRECT_URI"):
            assert name in message

    def test_secret_key_must_be_64_hex_chars(self) -> None:
        with pytest.raises(ValidationError, match="64 hex characters"):
            make_settings(secret_key="not-a-key")

    def test_bot_id_required_in_production(self) -> None:
        with pytest.raises(ValidationError, match="WORKS_BOT_ID"):
            make_settings(environment="production")

        assert make_settings(environment="production", works_bot_id="bot-1").is_production

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GRANT_ATTEMPTS", "5")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = make_settings()

        assert settings.grant_attempts == 5
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [{"environment": "test"}, {"port": 0}, {"log_level": "LOUD"}, {"grant_attempts": 0}],
    )
    def test_invalid_values(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            make_settings(**overrides)

    def test_browser_login_needs_both_credentials(self) -> None:
        assert not make_settings(works_admin_id="admin").has_browser_login
        assert make_settings(works_admin_id="admin", works_admin_password="pw").has_browser_login
