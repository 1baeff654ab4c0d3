"""Single-flight coordination of access token refreshes.

TokenCoordinator is the only entry point consumers use to obtain a bearer
token. It serves the cached token when one exists and otherwise runs the
refresh chain:

1. refresh grant with the stored refresh token (CredentialSource)
2. interactive login in a headless browser (BrowserAutomationAgent)

At most one chain runs per process. Callers arriving while it runs share its
result instead of starting their own; the old refresh token is invalidated the
moment a new one is issued, so two concurrent chains would race each other
into the browser tier.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol, TypeVar

from loguru import logger

from worksbot_server.browser_agent import BrowserAutomationAgent
from worksbot_server.credential_source import CredentialSource
from worksbot_server.exceptions import (
    BrowserAutomationFailed,
    CredentialExpiredError,
    GrantExchangeFailed,
    TokenAcquisitionFailed,
)

T = TypeVar("T")

DEFAULT_REFRESH_WAIT_TIMEOUT = 60.0


class CoordinatorState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class ReissueListener(Protocol):
    """Notified after the interactive login issued a brand new token pair."""

    async def token_reissued(self, access_token: str) -> None: ...


class TokenCoordinator:
    """Hands out access tokens and serializes their refresh."""

    def __init__(
        self,
        credential_source: CredentialSource,
        browser_agent: BrowserAutomationAgent,
        refresh_wait_timeout: float = DEFAULT_REFRESH_WAIT_TIMEOUT,
        notifier: ReissueListener | None = None,
    ) -> None:
        """Initialize TokenCoordinator.

        Args:
            credential_source: Cached token reads and the refresh grant
            browser_agent: Fallback when the refresh grant is exhausted
            refresh_wait_timeout: How long a caller waits on a refresh started
                by someone else before giving up (seconds)
            notifier: Optional listener told about browser re-issues
        """
        self._credential_source = credential_source
        self._browser_agent = browser_agent
        self._refresh_wait_timeout = refresh_wait_timeout
        self._notifier = notifier
        self._inflight: asyncio.Task[str] | None = None

    @property
    def state(self) -> CoordinatorState:
        if self._inflight is not None and not self._inflight.done():
            return CoordinatorState.REFRESHING
        return CoordinatorState.IDLE

    @property
    def refreshing(self) -> bool:
        return self.state is CoordinatorState.REFRESHING

    async def get_access_token(self) -> str:
        """Return a bearer token, refreshing only when nothing is cached.

        Raises:
            TokenAcquisitionFailed: If no tier could produce a token.
        """
        token = await self._credential_source.get_cached_access_token()
        if token:
            return token
        return await self.handle_refresh()

    async def handle_refresh(self, stale_token: str | None = None) -> str:
        """Obtain a new access token, joining a refresh already in flight.

        Args:
            stale_token: The token the caller just saw rejected. If the store
                already holds a different one, it is returned without a refresh.

        Raises:
            TokenAcquisitionFailed: If the chain failed, or if waiting on
                another caller's chain exceeded refresh_wait_timeout.
        """
        if self._inflight is not None:
            return await self._wait_for_inflight(self._inflight)

        if stale_token is not None:
            current = await self._credential_source.get_cached_access_token()
            if current and current != stale_token:
                logger.debug("Access token already rotated by another caller")
                return current
            # A chain may have started while the store was being read
            if self._inflight is not None:
                return await self._wait_for_inflight(self._inflight)

        task = asyncio.create_task(self._run_chain())
        self._inflight = task
        task.add_done_callback(self._chain_finished)
        # Shielded: cancelling this caller must not abort a chain others may join
        return await asyncio.shield(task)

    async def execute_with_token(
        self, operation: Callable[[str], Awaitable[T]], retries: int = 1
    ) -> T:
        """Run operation(token), refreshing and retrying when the token is rejected.

        The operation signals a rejected token by raising CredentialExpiredError.
        Any other exception propagates on its first occurrence.
        """
        token = await self.get_access_token()
        attempt = 0
        while True:
            try:
                return await operation(token)
            except CredentialExpiredError:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.info(
                    "Access token rejected, refreshing",
                    extra={"attempt": attempt, "retries": retries},
                )
                token = await self.handle_refresh(stale_token=token)

    async def _wait_for_inflight(self, task: "asyncio.Task[str]") -> str:
        logger.info("Token refresh already in progress, waiting")
        try:
            return await asyncio.wait_for(
                asyncio.shield(task), timeout=self._refresh_wait_timeout
            )
        except TimeoutError as e:
            logger.error(
                "Timed out waiting for token refresh",
                extra={"timeout_seconds": self._refresh_wait_timeout},
            )
            raise TokenAcquisitionFailed("Timed out waiting for token refresh", cause=e) from e

    def _chain_finished(self, task: "asyncio.Task[str]") -> None:
        if self._inflight is task:
            self._inflight = None
        # Mark the outcome retrieved when every caller was cancelled
        if not task.cancelled():
            task.exception()

    async def _run_chain(self) -> str:
        logger.info("Token refresh started")

        try:
            return await self._credential_source.refresh_via_grant()
        except GrantExchangeFailed as e:
            logger.warning(
                "Refresh grant failed, falling back to interactive login",
                extra={"attempts": e.attempts},
            )
        except Exception as e:
            logger.exception(
                "Refresh grant errored, falling back to interactive login",
                extra={"error": str(e)},
            )

        try:
            result = await self._browser_agent.reacquire_via_interactive_login()
            tokens = result.raise_for_failure()
            await self._credential_source.save_token_pair(tokens)
        except BrowserAutomationFailed as e:
            logger.error("Token acquisition failed on every tier", extra={"reason": e.reason})
            raise TokenAcquisitionFailed("Unable to acquire access token", cause=e) from e
        except Exception as e:
            logger.exception("Interactive login errored", extra={"error": str(e)})
            raise TokenAcquisitionFailed("Unable to acquire access token", cause=e) from e

        logger.info("Access token re-issued via interactive login")
        await self._notify_reissued(tokens.access_token)
        return tokens.access_token

    async def _notify_reissued(self, access_token: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.token_reissued(access_token)
        except Exception as e:
            logger.warning("Re-issue notification failed", extra={"error": str(e)})
