"""Server-share encryption at rest.

The server share is the part of a split secret held by the service. It is
stored encrypted with PyNaCl's SecretBox (XSalsa20-Poly1305) under a master
key supplied as base64 in SERVER_SHARE_KEY. Ciphertext and nonce are stored
as separate base64 columns.

The disclosure engine does not care about the scheme: it only needs to know
whether a share is present and to hand the plaintext to recipients.

Security invariants:
- Never log plaintext shares or ciphertext
- Master key is validated at construction (32 bytes)
- A fresh random nonce is used for every encryption
- Decryption fails if nonce, key or ciphertext is wrong (authentication)
"""

import base64
import binascii

import nacl.exceptions
import nacl.utils
from nacl.secret import SecretBox

from deadswitch.config import Settings
from deadswitch.logging import get_logger

logger = get_logger(__name__)

NONCE_SIZE = SecretBox.NONCE_SIZE
MASTER_KEY_SIZE = SecretBox.KEY_SIZE


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


def decode_master_key(key_b64: str | None) -> bytes:
    """Decode and validate a base64 master key.

    Raises:
        CryptoError: If the key is missing, invalid base64, or wrong size.
    """
    if not key_b64:
        raise CryptoError("SERVER_SHARE_KEY is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"SERVER_SHARE_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"SERVER_SHARE_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )

    return key


class ServerShareCipher:
    """Encrypts and decrypts server shares with a fixed master key."""

    def __init__(self, master_key: bytes):
        if len(master_key) != MASTER_KEY_SIZE:
            raise CryptoError(f"Master key must be {MASTER_KEY_SIZE} bytes")
        self._box = SecretBox(master_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerShareCipher":
        return cls(decode_master_key(settings.server_share_key))

    def encrypt_server_share(self, plaintext: str) -> tuple[str, str]:
        """Encrypt a share for storage.

        Returns:
            (ciphertext_b64, nonce_b64)
        """
        nonce = nacl.utils.random(NONCE_SIZE)
        encrypted = self._box.encrypt(plaintext.encode("utf-8"), nonce=nonce)
        return (
            base64.b64encode(encrypted.ciphertext).decode("ascii"),
            base64.b64encode(nonce).decode("ascii"),
        )

    def decrypt_server_share(self, ciphertext_b64: str, nonce_b64: str) -> str:
        """Decrypt a stored share.

        Raises:
            CryptoError: On malformed input or failed authentication.
        """
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
            nonce = base64.b64decode(nonce_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError("Stored server share is not valid base64") from e

        if len(nonce) != NONCE_SIZE:
            raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

        try:
            plaintext = self._box.decrypt(ciphertext, nonce=nonce)
        except nacl.exceptions.CryptoError as e:
            logger.error("server_share_decryption_failed")
            raise CryptoError("Decryption failed") from e

        return plaintext.decode("utf-8")
