"""Unit tests for SecretCipher."""

import pytest

from tests.fakes import TEST_SECRET_KEY
from worksbot_server.crypto import SecretCipher
from worksbot_server.exceptions import SecretDecryptionError

OTHER_KEY = "ff" * 32


class TestSecretCipherKey:
    def test_rejects_non_hex_key(self) -> None:
        with pytest.raises(ValueError, match="hex"):
            SecretCipher("z" * 64)

    def test_rejects_short_key(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            SecretCipher("ab" * 16)


class TestSecretCipher:
    """Tests for encrypt/decrypt."""

    @pytest.fixture
    def cipher(self) -> SecretCipher:
        return SecretCipher(TEST_SECRET_KEY)

    @pytest.mark.parametrize(
        "plaintext",
        ["", "a", "exactly-16-bytes", "jp1AAABBBCCC.token-value/with+symbols=", "한글 토큰 ✓"],
    )
    def test_decrypt_inverts_encrypt(self, cipher: SecretCipher, plaintext: str) -> None:
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_fresh_iv_per_call(self, cipher: SecretCipher) -> None:
        """The same plaintext never encrypts to the same stored value."""
        first = cipher.encrypt("same-token")
        second = cipher.encrypt("same-token")

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]

    def test_stored_format_is_hex_iv_and_ciphertext(self, cipher: SecretCipher) -> None:
        iv_hex, ciphertext_hex = cipher.encrypt("token").split(":")

        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(ciphertext_hex)) % 16 == 0
        assert "token" not in ciphertext_hex

    def test_wrong_key_fails(self, cipher: SecretCipher) -> None:
        stored = cipher.encrypt("some-refresh-token-value")

        with pytest.raises(SecretDecryptionError):
            SecretCipher(OTHER_KEY).decrypt(stored)

    @pytest.mark.parametrize(
        "stored",
        [
            "no-separator",
            ":deadbeef",
            "00112233445566778899aabbccddeeff:",
            "zz:zz",
            "0011:00112233445566778899aabbccddeeff",
            "00112233445566778899aabbccddeeff:0011",
        ],
    )
    def test_malformed_values_fail(self, cipher: SecretCipher, stored: str) -> None:
        with pytest.raises(SecretDecryptionError):
            cipher.decrypt(stored)
