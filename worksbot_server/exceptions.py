"""Custom exceptions for the works bot server.

Lower tiers (secret store, grant exchange, browser login) log their own
failures and hand a failure signal to the coordinator; only
TokenAcquisitionFailed is ever raised out of TokenCoordinator.
"""


class WorksBotError(Exception):
    """Base exception for all works bot server errors."""

    pass


class SecretNotFound(WorksBotError):
    """Raised when a key has no stored secret."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Secret not found: {key}")


class SecretDecryptionError(WorksBotError):
    """Raised when a stored value cannot be decrypted.

    Either the IV/ciphertext pair is malformed or the key material changed.
    """

    pass


class GrantExchangeFailed(WorksBotError):
    """Raised when every refresh-grant attempt was rejected."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class BrowserAutomationFailed(WorksBotError):
    """Raised when the interactive login could not produce a token pair."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Browser automation failed: {reason}")
        self.reason = reason


class TokenAcquisitionFailed(WorksBotError):
    """Raised when no tier could produce a valid access token."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class CredentialExpiredError(WorksBotError):
    """Raised by API wrappers when the remote side rejects the bearer token (401)."""

    pass


class BotAPIError(WorksBotError):
    """Raised for non-authorization failures of the bot API."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"Bot API error {status_code}: {message}")
