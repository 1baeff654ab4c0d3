"""Interactive login through a headless browser.

Last resort when the refresh token itself has been rejected. The agent signs in
to the NAVER WORKS authorization page with the stored admin account, captures
the authorization code from the redirect and exchanges it for a fresh pair.

The browser is a separate process tree, so every session is supervised: it has
a hard lifetime bound and is torn down in `finally`, killed outright if a
graceful close does not finish in time.
"""

import asyncio
import secrets
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from worksbot_server.credential_source import CredentialSource, TokenPair
from worksbot_server.exceptions import BrowserAutomationFailed
from worksbot_server.logging import mask

# Tried in order; the login page markup has changed over time
USERNAME_SELECTORS = ('input[name="username"]', "#user_id", "#id", 'input[type="text"]')
PASSWORD_SELECTORS = ('input[name="password"]', "#user_pwd", "#pw", 'input[type="password"]')
SUBMIT_SELECTORS = ("#loginBtn", ".login-btn", 'button[type="submit"]', 'input[type="submit"]')

CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

_BLANK_PAGE = "<html><body>Authorization captured.</body></html>"


@dataclass
class LoginResult:
    """Outcome of one interactive login."""

    tokens: TokenPair | None = None
    reason: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.tokens is not None

    def raise_for_failure(self) -> TokenPair:
        """Return the tokens, or raise BrowserAutomationFailed with the reason."""
        if self.tokens is None:
            raise BrowserAutomationFailed(self.reason or "unknown")
        return self.tokens


class BrowserSession:
    """Async context manager around one headless Chromium instance.

    Yields a fresh page. On exit the browser is closed; if that does not
    finish within close_timeout the Playwright driver is stopped, which
    terminates the browser process tree with it.
    """

    def __init__(self, settings: Any, playwright_factory: Any = async_playwright) -> None:
        self._settings = settings
        self._playwright_factory = playwright_factory
        self._playwright: Any = None
        self._browser: Any = None

    async def __aenter__(self) -> Any:
        try:
            self._playwright = await self._playwright_factory().start()

            launch_options: dict[str, Any] = {
                "headless": self._settings.browser_headless,
                "args": CHROMIUM_ARGS,
            }
            if self._settings.browser_executable_path:
                launch_options["executable_path"] = self._settings.browser_executable_path

            self._browser = await self._playwright.chromium.launch(**launch_options)
            context = await self._browser.new_context()
            return await context.new_page()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the browser and stop the driver. Safe to call more than once."""
        timeout = self._settings.browser_close_timeout
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        try:
            if browser is not None:
                await asyncio.wait_for(browser.close(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Browser did not close in time, stopping driver",
                extra={"timeout_seconds": timeout},
            )
        except PlaywrightError as e:
            logger.warning("Browser close failed", extra={"error": str(e)})
        finally:
            if playwright is not None:
                try:
                    await asyncio.wait_for(playwright.stop(), timeout=timeout)
                except (TimeoutError, PlaywrightError) as e:
                    logger.error(
                        "Playwright driver did not stop cleanly",
                        extra={"error": f"{type(e).__name__}: {e}"},
                    )
        logger.debug("Browser session closed")


class BrowserAutomationAgent:
    """Re-acquires the token pair by driving the authorization page."""

    def __init__(
        self,
        settings: Any,
        credential_source: CredentialSource,
        playwright_factory: Any = async_playwright,
    ) -> None:
        """Initialize BrowserAutomationAgent.

        Args:
            settings: Settings instance (login account, endpoints, browser timeouts)
            credential_source: Used to exchange the captured authorization code
            playwright_factory: Callable returning a Playwright context manager
                (injectable for testing)
        """
        self._settings = settings
        self._credential_source = credential_source
        self._playwright_factory = playwright_factory

    def build_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.works_client_id,
            "redirect_uri": self._settings.works_redirect_uri,
            "response_type": "code",
            "scope": self._settings.works_scope,
            "state": state,
        }
        return f"{self._settings.works_authorize_url}?{urlencode(params)}"

    async def reacquire_via_interactive_login(self) -> LoginResult:
        """Run the interactive login and exchange the captured code.

        Never raises for step failures: timeouts, missing form fields, an
        OAuth error on the redirect or a rejected code all produce a failed
        LoginResult. The browser is always torn down before this returns.
        """
        if not self._settings.has_browser_login:
            logger.error("Interactive login is not configured (WORKS_ADMIN_ID/PASSWORD)")
            return LoginResult(reason="login credentials not configured")

        logger.info("Starting interactive login")
        session_timeout = self._settings.browser_session_timeout
        try:
            code = await asyncio.wait_for(self._capture_code(), timeout=session_timeout)
        except BrowserAutomationFailed as e:
            logger.error("Interactive login failed", extra={"reason": e.reason})
            return LoginResult(reason=e.reason)
        except TimeoutError:
            logger.error(
                "Interactive login exceeded session timeout",
                extra={"timeout_seconds": session_timeout},
            )
            return LoginResult(reason="session timeout")
        except PlaywrightTimeoutError as e:
            logger.error("Interactive login timed out", extra={"error": str(e)})
            return LoginResult(reason="timeout")
        except Exception as e:
            logger.exception("Interactive login error", extra={"error": str(e)})
            return LoginResult(reason=f"{type(e).__name__}: {e}")

        logger.info("Authorization code captured", extra={"code": mask(code)})
        tokens = await self._credential_source.exchange_authorization_code_grant(code)
        if tokens is None:
            return LoginResult(reason="authorization code exchange failed")
        return LoginResult(tokens=tokens)

    async def _capture_code(self) -> str:
        async with BrowserSession(self._settings, self._playwright_factory) as page:
            redirect_url = await self._login(page)
        return _extract_code(redirect_url)

    async def _login(self, page: Any) -> str:
        """Sign in on the authorization page and return the callback URL reached."""
        settings = self._settings
        redirect_uri = settings.works_redirect_uri

        def is_callback(url: str) -> bool:
            return url.startswith(redirect_uri)

        # The code must not reach the live callback endpoint, which would spend it
        async def fulfill_callback(route: Any) -> None:
            await route.fulfill(status=200, content_type="text/html", body=_BLANK_PAGE)

        await page.route(is_callback, fulfill_callback)

        await page.goto(
            self.build_authorization_url(secrets.token_urlsafe(16)),
            wait_until="domcontentloaded",
            timeout=settings.browser_login_timeout * 1000,
        )

        username = await self._find(page, USERNAME_SELECTORS)
        password = await self._find(page, PASSWORD_SELECTORS)
        submit = await self._query_first(page, SUBMIT_SELECTORS)

        await username.fill(settings.works_admin_id)
        await password.fill(settings.works_admin_password)

        async with page.expect_navigation(timeout=settings.browser_login_timeout * 1000):
            if submit is not None:
                await submit.click()
            else:
                logger.warning("Login button not found, submitting with Enter")
                await password.press("Enter")

        await page.wait_for_url(is_callback, timeout=settings.browser_redirect_timeout * 1000)
        return page.url

    async def _find(self, page: Any, candidates: tuple[str, ...]) -> Any:
        """Return the first element matching the candidates, in priority order."""
        await page.wait_for_selector(
            ", ".join(candidates),
            timeout=self._settings.browser_selector_timeout * 1000,
        )
        element = await self._query_first(page, candidates)
        if element is not None:
            return element
        raise BrowserAutomationFailed(f"login form element not found: {candidates[0]}")

    @staticmethod
    async def _query_first(page: Any, candidates: tuple[str, ...]) -> Any | None:
        for selector in candidates:
            element = await page.query_selector(selector)
            if element is not None:
                return element
        return None


def _extract_code(url: str) -> str:
    """Pull the authorization code out of the callback URL."""
    params = parse_qs(urlparse(url).query)
    if "error" in params:
        description = params.get("error_description", [""])[0]
        raise BrowserAutomationFailed(
            f"authorization error: {params['error'][0]} {description}".strip()
        )
    code = params.get("code", [""])[0]
    if not code:
        raise BrowserAutomationFailed("callback URL carried no authorization code")
    return code
