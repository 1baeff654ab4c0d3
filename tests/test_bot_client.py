"""Unit tests for the bot API client, MessageSender and ReissueNotifier."""

import pytest

from tests.fakes import (
    API_BASE_URL,
    TEST_SECRET_KEY,
    FakeBotAPI,
    FakeBrowserAgent,
    FakeSecretBackend,
    FakeSettings,
    FakeTokenEndpoint,
)
from worksbot_server.bot_client import MessageSender, ReissueNotifier, WorksBotClient
from worksbot_server.credential_source import CredentialSource
from worksbot_server.crypto import SecretCipher
from worksbot_server.exceptions import BotAPIError, CredentialExpiredError
from worksbot_server.secret_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SecretStore
from worksbot_server.token_coordinator import TokenCoordinator


class TestWorksBotClient:
    @pytest.mark.asyncio
    async def test_send_text_message(self) -> None:
        api = FakeBotAPI(valid_tokens={"A1"})
        client = WorksBotClient(FakeSettings(), http_client=api.client())

        await client.send_text_message("A1", "user-7", "hello")

        assert api.messages == [
            {
                "url": f"{API_BASE_URL}/bots/bot-1/users/user-7/messages",
                "token": "A1",
                "body": {"content": {"type": "text", "text": "hello"}},
            }
        ]

    @pytest.mark.asyncio
    async def test_unauthorized_raises_credential_expired(self) -> None:
        client = WorksBotClient(FakeSettings(), http_client=FakeBotAPI().client())

        with pytest.raises(CredentialExpiredError):
            await client.send_text_message("stale", "user-7", "hello")

    @pytest.mark.asyncio
    async def test_other_errors_raise_bot_api_error(self) -> None:
        api = FakeBotAPI(valid_tokens={"A1"})
        api.fail_with_status = 500
        client = WorksBotClient(FakeSettings(), http_client=api.client())

        with pytest.raises(BotAPIError) as exc_info:
            await client.send_text_message("A1", "user-7", "hello")

        assert exc_info.value.status_code == 500
        assert "Simulated failure" in str(exc_info.value)


class TestMessageSender:
    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_transparently(self) -> None:
        store = SecretStore(FakeSecretBackend(), SecretCipher(TEST_SECRET_KEY))
        await store.set_many({ACCESS_TOKEN_KEY: "A1", REFRESH_TOKEN_KEY: "R1"})
        endpoint = FakeTokenEndpoint(valid_refresh_tokens={"R1"})
        source = CredentialSource(FakeSettings(), store, http_client=endpoint.client())
        coordinator = TokenCoordinator(source, FakeBrowserAgent())  # type: ignore[arg-type]
        api = FakeBotAPI(valid_tokens={"A1-new"})
        sender = MessageSender(WorksBotClient(FakeSettings(), http_client=api.client()), coordinator)

        await sender.send_text("user-7", "hello")

        assert [message["token"] for message in api.messages] == ["A1-new"]
        assert len(endpoint.requests) == 1


class TestReissueNotifier:
    @pytest.mark.asyncio
    async def test_sends_notice_with_new_token(self) -> None:
        settings = FakeSettings(works_notify_user_id="admin-user")
        api = FakeBotAPI(valid_tokens={"A9-fresh-token"})
        notifier = ReissueNotifier(WorksBotClient(settings, http_client=api.client()), settings)

        await notifier.token_reissued("A9-fresh-token")

        assert len(api.messages) == 1
        message = api.messages[0]
        assert message["url"].endswith("/users/admin-user/messages")
        text = message["body"]["content"]["text"]
        assert "re-issued" in text
        assert "KST" in text
        assert "A9-fresh-token" not in text

    @pytest.mark.asyncio
    async def test_without_recipient_sends_nothing(self) -> None:
        settings = FakeSettings(works_notify_user_id="")
        api = FakeBotAPI(valid_tokens={"A9"})
        notifier = ReissueNotifier(WorksBotClient(settings, http_client=api.client()), settings)

        await notifier.token_reissued("A9")

        assert api.messages == []
