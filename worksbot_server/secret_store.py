"""Encrypted key/value persistence for the bot's OAuth credentials."""

from typing import Protocol

from loguru import logger

from worksbot_server.crypto import SecretCipher
from worksbot_server.exceptions import SecretNotFound

ACCESS_TOKEN_KEY = "ACCESS_TOKEN"
REFRESH_TOKEN_KEY = "REFRESH_TOKEN"


class SecretBackend(Protocol):
    """Protocol for the persistent store behind SecretStore."""

    async def get_encrypted_value(self, key: str) -> str | None: ...

    async def upsert_encrypted_value(self, key: str, encrypted_value: str) -> None: ...

    async def upsert_encrypted_values(self, values: dict[str, str]) -> None: ...


class SecretStore:
    """Reads and writes secrets, encrypting on the way in and decrypting on the way out.

    Writes are idempotent upserts. set_many() writes each key as its own upsert
    unless atomic_writes is enabled, in which case all keys share one
    transaction.
    """

    def __init__(
        self, backend: SecretBackend, cipher: SecretCipher, atomic_writes: bool = False
    ) -> None:
        self._backend = backend
        self._cipher = cipher
        self._atomic_writes = atomic_writes

    async def get(self, key: str) -> str:
        """Return the decrypted secret.

        Raises:
            SecretNotFound: If nothing is stored under key.
            SecretDecryptionError: If the stored value cannot be decrypted.
        """
        encrypted_value = await self._backend.get_encrypted_value(key)
        if encrypted_value is None:
            raise SecretNotFound(key)
        return self._cipher.decrypt(encrypted_value)

    async def set(self, key: str, value: str) -> None:
        await self._backend.upsert_encrypted_value(key, self._cipher.encrypt(value))
        logger.debug("Secret updated", extra={"key": key})

    async def set_many(self, values: dict[str, str]) -> None:
        """Store several secrets, in the order given."""
        if self._atomic_writes:
            encrypted = {key: self._cipher.encrypt(value) for key, value in values.items()}
            await self._backend.upsert_encrypted_values(encrypted)
            logger.debug("Secrets updated atomically", extra={"keys": list(values)})
            return

        for key, value in values.items():
            await self.set(key, value)
