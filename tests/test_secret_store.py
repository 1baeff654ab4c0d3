"""Unit tests for SecretStore and the SQLAlchemy Database backend."""

from pathlib import Path

import pytest
import pytest_asyncio

from tests.fakes import TEST_SECRET_KEY, FakeSecretBackend
from worksbot_server.crypto import SecretCipher
from worksbot_server.database import Database
from worksbot_server.exceptions import SecretDecryptionError, SecretNotFound
from worksbot_server.secret_store import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, SecretStore


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(TEST_SECRET_KEY)


@pytest.fixture
def backend() -> FakeSecretBackend:
    return FakeSecretBackend()


class TestSecretStore:
    @pytest.mark.asyncio
    async def test_get_missing_key_raises(
        self, backend: FakeSecretBackend, cipher: SecretCipher
    ) -> None:
        store = SecretStore(backend, cipher)

        with pytest.raises(SecretNotFound) as exc_info:
            await store.get(ACCESS_TOKEN_KEY)

        assert exc_info.value.key == ACCESS_TOKEN_KEY

    @pytest.mark.asyncio
    async def test_set_stores_ciphertext_only(
        self, backend: FakeSecretBackend, cipher: SecretCipher
    ) -> None:
        store = SecretStore(backend, cipher)

        await store.set(ACCESS_TOKEN_KEY, "plain-access-token")

        stored = backend.rows[ACCESS_TOKEN_KEY]
        assert "plain-access-token" not in stored
        assert await store.get(ACCESS_TOKEN_KEY) == "plain-access-token"

    @pytest.mark.asyncio
    async def test_set_overwrites(self, backend: FakeSecretBackend, cipher: SecretCipher) -> None:
        store = SecretStore(backend, cipher)

        await store.set(REFRESH_TOKEN_KEY, "R1")
        await store.set(REFRESH_TOKEN_KEY, "R2")

        assert await store.get(REFRESH_TOKEN_KEY) == "R2"
        assert list(backend.rows) == [REFRESH_TOKEN_KEY]

    @pytest.mark.asyncio
    async def test_set_many_writes_keys_separately_in_order(
        self, backend: FakeSecretBackend, cipher: SecretCipher
    ) -> None:
        store = SecretStore(backend, cipher)

        await store.set_many({ACCESS_TOKEN_KEY: "A1", REFRESH_TOKEN_KEY: "R1"})

        assert backend.transactions == [[ACCESS_TOKEN_KEY], [REFRESH_TOKEN_KEY]]

    @pytest.mark.asyncio
    async def test_set_many_atomic_uses_one_transaction(
        self, backend: FakeSecretBackend, cipher: SecretCipher
    ) -> None:
        store = SecretStore(backend, cipher, atomic_writes=True)

        await store.set_many({ACCESS_TOKEN_KEY: "A1", REFRESH_TOKEN_KEY: "R1"})

        assert backend.transactions == [[ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY]]
        assert await store.get(ACCESS_TOKEN_KEY) == "A1"
        assert await store.get(REFRESH_TOKEN_KEY) == "R1"

    @pytest.mark.asyncio
    async def test_value_from_other_key_is_unreadable(
        self, backend: FakeSecretBackend, cipher: SecretCipher
    ) -> None:
        await SecretStore(backend, SecretCipher("ab" * 32)).set(ACCESS_TOKEN_KEY, "A1-token-value")

        with pytest.raises(SecretDecryptionError):
            await SecretStore(backend, cipher).get(ACCESS_TOKEN_KEY)


class TestDatabase:
    """SecretStore against a real SQLite file."""

    @pytest_asyncio.fixture
    async def database(self, tmp_path: Path):
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'secrets.db'}")
        await database.init()
        yield database
        await database.close()

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, database: Database) -> None:
        assert await database.get_encrypted_value(ACCESS_TOKEN_KEY) is None

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, database: Database) -> None:
        await database.upsert_encrypted_value(REFRESH_TOKEN_KEY, "iv1:ct1")
        await database.upsert_encrypted_value(REFRESH_TOKEN_KEY, "iv2:ct2")

        assert await database.get_encrypted_value(REFRESH_TOKEN_KEY) == "iv2:ct2"

    @pytest.mark.asyncio
    async def test_store_round_trip(self, database: Database, cipher: SecretCipher) -> None:
        store = SecretStore(database, cipher, atomic_writes=True)

        await store.set_many({ACCESS_TOKEN_KEY: "A1", REFRESH_TOKEN_KEY: "R1"})

        assert await store.get(ACCESS_TOKEN_KEY) == "A1"
        assert await store.get(REFRESH_TOKEN_KEY) == "R1"
        stored = await database.get_encrypted_value(ACCESS_TOKEN_KEY)
        assert stored is not None
        assert stored != "A1"

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path: Path, cipher: SecretCipher) -> None:
        url = f"sqlite+aiosqlite:///{tmp_path / 'restart.db'}"

        first = Database(url)
        await first.init()
        await SecretStore(first, cipher).set(REFRESH_TOKEN_KEY, "R7")
        await first.close()

        second = Database(url)
        await second.init()
        try:
            assert await SecretStore(second, cipher).get(REFRESH_TOKEN_KEY) == "R7"
        finally:
            await second.close()
