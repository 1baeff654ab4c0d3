"""OAuth grant exchanges against the NAVER WORKS token endpoint.

CredentialSource owns the two grant types the service needs:
- refresh_token: rotate the stored pair without user interaction
- authorization_code: finish an interactive login (browser tier or manual callback)

Both exchanges treat every failure (non-2xx, network error, malformed body) as
soft: they log and return None so the caller can move on to the next tier.
"""

from dataclasses import dataclass
from typing import Any

import certifi
import httpx
from loguru import logger
from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from worksbot_server.exceptions import GrantExchangeFailed, SecretDecryptionError, SecretNotFound
from worksbot_server.logging import mask
from worksbot_server.secret_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SecretStore

# Used when the token endpoint omits expires_in
DEFAULT_EXPIRES_IN = 86400


@dataclass
class TokenPair:
    """Access and refresh token returned by one grant exchange."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = DEFAULT_EXPIRES_IN


class CredentialSource:
    """Performs grant exchanges and keeps SecretStore in sync with their results."""

    def __init__(
        self,
        settings: Any,
        secret_store: SecretStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize CredentialSource.

        Args:
            settings: Settings instance (client credentials, endpoints, retry policy)
            secret_store: Where the token pair lives
            http_client: Optional client (injectable for testing). If not
                provided, one is created and owned by this instance.
        """
        self._settings = settings
        self._store = secret_store
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            verify=certifi.where(),
            timeout=settings.http_timeout,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def exchange_refresh_grant(self, refresh_token: str) -> TokenPair | None:
        """Trade a refresh token for a new pair. Returns None on any failure."""
        payload = {
            "grant_type": "refresh_token",
            "client_id": self._settings.works_client_id,
            "client_secret": self._settings.works_client_secret,
            "refresh_token": refresh_token,
        }
        return await self._request_token(payload, fallback_refresh_token=refresh_token)

    async def exchange_authorization_code_grant(self, code: str) -> TokenPair | None:
        """Trade an authorization code for a new pair. Returns None on any failure."""
        payload = {
            "grant_type": "authorization_code",
            "client_id": self._settings.works_client_id,
            "client_secret": self._settings.works_client_secret,
            "code": code,
            "redirect_uri": self._settings.works_redirect_uri,
        }
        return await self._request_token(payload)

    async def get_cached_access_token(self) -> str | None:
        """Return the stored access token, or None if there is no usable one."""
        try:
            return await self._store.get(ACCESS_TOKEN_KEY)
        except SecretNotFound:
            logger.debug("No stored access token")
            return None
        except SecretDecryptionError as e:
            logger.warning("Stored access token is unreadable", extra={"error": str(e)})
            return None
        except Exception as e:
            # Storage errors count as a cache miss
            logger.warning(
                "Reading stored access token failed",
                extra={"error": f"{type(e).__name__}: {e}"},
            )
            return None

    async def refresh_via_grant(self) -> str:
        """Rotate the token pair using the stored refresh token.

        The refresh token is re-read from the store before every attempt:
        a concurrent refresh elsewhere may already have rotated it, and the
        old one stops working the moment the new one is issued.

        Returns:
            The new access token (already persisted together with the new
            refresh token).

        Raises:
            GrantExchangeFailed: If all attempts were rejected.
        """
        max_attempts = self._settings.grant_attempts
        pair: TokenPair | None = None

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_result(lambda result: result is None),
                stop=stop_after_attempt(max_attempts),
                wait=wait_fixed(self._settings.grant_retry_wait_seconds),
                before_sleep=self._log_retry,
            ):
                with attempt:
                    pair = await self._attempt_refresh_grant()
                if not attempt.retry_state.outcome.failed:  # type: ignore[union-attr]
                    attempt.retry_state.set_result(pair)
        except RetryError as e:
            logger.error("Refresh grant exhausted", extra={"attempts": max_attempts})
            raise GrantExchangeFailed(
                f"Refresh grant rejected after {max_attempts} attempts", attempts=max_attempts
            ) from e

        if pair is None:
            raise GrantExchangeFailed("Refresh grant produced no token pair", attempts=max_attempts)
        await self.save_token_pair(pair)
        logger.info("Access token refreshed and saved", extra={"expires_in": pair.expires_in})
        return pair.access_token

    async def save_token_pair(self, pair: TokenPair) -> None:
        """Persist both tokens. The old refresh token is dead once the new one is stored."""
        await self._store.set_many(
            {
                ACCESS_TOKEN_KEY: pair.access_token,
                REFRESH_TOKEN_KEY: pair.refresh_token,
            }
        )

    async def _attempt_refresh_grant(self) -> TokenPair | None:
        try:
            refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
        except SecretNotFound:
            logger.warning("No stored refresh token")
            return None
        except SecretDecryptionError as e:
            logger.error("Stored refresh token is unreadable", extra={"error": str(e)})
            return None

        return await self.exchange_refresh_grant(refresh_token)

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        logger.warning(
            f"Token request failed, retrying ({retry_state.attempt_number}/"
            f"{retry_state.retry_object.stop.max_attempt_number})"
        )

    async def _request_token(
        self, payload: dict[str, str], fallback_refresh_token: str | None = None
    ) -> TokenPair | None:
        grant_type = payload["grant_type"]
        try:
            response = await self._client.post(
                self._settings.works_token_url,
                data=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(
                "Token request error",
                extra={"grant_type": grant_type, "error": f"{type(e).__name__}: {e}"},
            )
            return None

        if not response.is_success:
            logger.error(
                f"Token request error - Status: {response.status_code}",
                extra={
                    "grant_type": grant_type,
                    "status_code": response.status_code,
                    "error_description": _error_description(response),
                },
            )
            return None

        try:
            body = response.json()
            refresh_token = body.get("refresh_token") or fallback_refresh_token
            if not body.get("access_token") or not refresh_token:
                raise KeyError("access_token/refresh_token")
            pair = TokenPair(
                access_token=body["access_token"],
                refresh_token=refresh_token,
                token_type=body.get("token_type") or "Bearer",
                expires_in=int(body.get("expires_in") or DEFAULT_EXPIRES_IN),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(
                "Token response is malformed",
                extra={"grant_type": grant_type, "error": str(e)},
            )
            return None

        logger.debug(
            "Token request succeeded",
            extra={"grant_type": grant_type, "access_token": mask(pair.access_token)},
        )
        return pair


def _error_description(response: httpx.Response) -> str:
    """Extract the OAuth error description from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("error_description") or data.get("error") or data)
    return str(data)
