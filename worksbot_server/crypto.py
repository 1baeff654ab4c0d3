"""AES-256-CBC encryption for secrets at rest.

Stored format is ``hex(iv):hex(ciphertext)``. Every call to encrypt() draws a
fresh 16-byte IV, so encrypting the same plaintext twice never yields the same
stored value.
"""

import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from worksbot_server.exceptions import SecretDecryptionError

IV_LENGTH = 16  # AES block size
KEY_LENGTH = 32  # AES-256


class SecretCipher:
    """Symmetric cipher for StoredSecret values."""

    def __init__(self, key_hex: str) -> None:
        """Initialize with a 32-byte key given as 64 hex characters.

        Raises:
            ValueError: If the key is not valid hex or has the wrong length.
        """
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise ValueError("Secret key must be hex encoded") from e
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Secret key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._key = key

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            SecretDecryptionError: If the value is malformed or was encrypted
                under a different key.
        """
        iv_hex, sep, ciphertext_hex = token.partition(":")
        if not sep or not iv_hex or not ciphertext_hex:
            raise SecretDecryptionError("Stored secret is not in iv:ciphertext form")

        try:
            iv = binascii.unhexlify(iv_hex)
            ciphertext = binascii.unhexlify(ciphertext_hex)
        except (binascii.Error, ValueError) as e:
            raise SecretDecryptionError("Stored secret is not valid hex") from e

        if len(iv) != IV_LENGTH:
            raise SecretDecryptionError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
        if not ciphertext or len(ciphertext) % IV_LENGTH:
            raise SecretDecryptionError("Ciphertext length is not a multiple of the block size")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            # Bad padding almost always means the key changed
            raise SecretDecryptionError("Stored secret could not be decrypted") from e
