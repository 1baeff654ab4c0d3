"""NAVER WORKS bot API client.

The message-sending call is the main consumer of TokenCoordinator: a 401 from
the bot API is turned into CredentialExpiredError so execute_with_token can
refresh and retry once.
"""

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import certifi
import httpx
from loguru import logger

from worksbot_server.exceptions import BotAPIError, CredentialExpiredError
from worksbot_server.logging import mask
from worksbot_server.token_coordinator import TokenCoordinator

# Timestamps in admin notices use the tenant's local time
NOTICE_TIMEZONE = ZoneInfo("Asia/Seoul")


class WorksBotClient:
    """Thin async wrapper over the bot messaging endpoint."""

    def __init__(self, settings: Any, http_client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.works_api_base_url.rstrip("/")
        self._bot_id = settings.works_bot_id
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            verify=certifi.where(),
            timeout=settings.http_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_text_message(self, access_token: str, user_id: str, text: str) -> None:
        """Send a plain text message to one user.

        Raises:
            CredentialExpiredError: On 401; the caller should refresh and retry.
            BotAPIError: On any other error response.
        """
        url = f"{self._base_url}/bots/{self._bot_id}/users/{user_id}/messages"
        response = await self._client.post(
            url,
            json={"content": {"type": "text", "text": text}},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        self._check_response(response)
        logger.debug("Message sent", extra={"user_id": user_id})

    def _check_response(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        if response.status_code == 401:
            logger.warning("Bot API rejected access token")
            raise CredentialExpiredError("Access token rejected by bot API")

        try:
            error_data = response.json()
            message = error_data.get("description") or error_data.get("code") or response.text
        except (ValueError, AttributeError):
            message = response.text
        raise BotAPIError(response.status_code, str(message)[:200])


class MessageSender:
    """Sends messages with automatic refresh-and-retry on token expiry."""

    def __init__(self, client: WorksBotClient, coordinator: TokenCoordinator) -> None:
        self._client = client
        self._coordinator = coordinator

    async def send_text(self, user_id: str, text: str) -> None:
        async def send(token: str) -> None:
            await self._client.send_text_message(token, user_id, text)

        await self._coordinator.execute_with_token(send)


class ReissueNotifier:
    """Tells the admin that the interactive login had to re-issue the tokens.

    Sent with the freshly issued token, never through the coordinator, so a
    failing notice can not trigger another refresh.
    """

    def __init__(self, client: WorksBotClient, settings: Any) -> None:
        self._client = client
        self._user_id = settings.works_notify_user_id

    async def token_reissued(self, access_token: str) -> None:
        if not self._user_id:
            return
        timestamp = datetime.now(NOTICE_TIMEZONE).strftime("%Y-%m-%d %H:%M:%S")
        text = (
            "[WorksBot] Access token was re-issued through interactive login.\n"
            f"Time: {timestamp} (KST)\n"
            f"Token: {mask(access_token, visible=10)}"
        )
        await self._client.send_text_message(access_token, self._user_id, text)
        logger.info("Re-issue notice sent", extra={"user_id": self._user_id})
