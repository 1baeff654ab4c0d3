"""Process-wide service wiring.

Everything is built once at startup (FastAPI lifespan or the refresh job) and
passed by reference; there are no module-level instances.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from worksbot_server.bot_client import MessageSender, ReissueNotifier, WorksBotClient
from worksbot_server.browser_agent import BrowserAutomationAgent
from worksbot_server.config import Settings
from worksbot_server.credential_source import CredentialSource
from worksbot_server.crypto import SecretCipher
from worksbot_server.database import Database
from worksbot_server.secret_store import SecretStore
from worksbot_server.token_coordinator import TokenCoordinator


@dataclass
class Services:
    settings: Settings
    database: Database
    secret_store: SecretStore
    credential_source: CredentialSource
    browser_agent: BrowserAutomationAgent
    bot_client: WorksBotClient
    coordinator: TokenCoordinator
    message_sender: MessageSender

    async def aclose(self) -> None:
        """Release HTTP clients and the connection pool."""
        await self.credential_source.aclose()
        await self.bot_client.aclose()
        await self.database.close()


ServicesFactory = Callable[[Settings], Awaitable[Services]]


async def build_services(settings: Settings) -> Services:
    """Create and connect all services for one process."""
    database = Database(
        settings.database_url,
        timeout=settings.database_timeout,
        echo=settings.debug,
    )
    await database.init()

    secret_store = SecretStore(
        database,
        SecretCipher(settings.secret_key),
        atomic_writes=settings.atomic_token_writes,
    )
    credential_source = CredentialSource(settings, secret_store)
    browser_agent = BrowserAutomationAgent(settings, credential_source)
    bot_client = WorksBotClient(settings)
    coordinator = TokenCoordinator(
        credential_source,
        browser_agent,
        refresh_wait_timeout=settings.refresh_wait_timeout,
        notifier=ReissueNotifier(bot_client, settings),
    )

    logger.info(
        "Services initialized",
        extra={
            "database": settings.database_url.split("://", 1)[0],
            "browser_login": settings.has_browser_login,
            "atomic_token_writes": settings.atomic_token_writes,
        },
    )
    return Services(
        settings=settings,
        database=database,
        secret_store=secret_store,
        credential_source=credential_source,
        browser_agent=browser_agent,
        bot_client=bot_client,
        coordinator=coordinator,
        message_sender=MessageSender(bot_client, coordinator),
    )
