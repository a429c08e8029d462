"""Symmetric encryption of OAuth credentials at rest.

Envelope layout (all segments standard base64, joined by ":"):

    salt(64 bytes) : nonce(16 bytes) : ciphertext(n bytes) : tag(16 bytes)

Every call draws a fresh salt and nonce, derives a per-call AES-256 key from
the long-term secret with PBKDF2-HMAC-SHA512 (100,000 iterations) and seals
the plaintext with AES-GCM. Encrypting the same plaintext twice therefore
never yields the same envelope.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from services.errors import CryptoError

logger = logging.getLogger(__name__)

SALT_LENGTH = 64
NONCE_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
ITERATIONS = 100_000
MIN_SECRET_LENGTH = 32
SEPARATOR = ":"


class CredentialVault:
    """Encrypts and decrypts credential envelopes with one long-term secret."""

    def __init__(self, secret: str):
        self._secret = secret or ""

    @property
    def is_configured(self) -> bool:
        return len(self._secret) >= MIN_SECRET_LENGTH

    def _derive_key(self, salt: bytes) -> bytes:
        # checked on first use, not at construction
        if not self._secret:
            raise CryptoError("ENCRYPTION_KEY is not set")
        if len(self._secret) < MIN_SECRET_LENGTH:
            raise CryptoError(f"ENCRYPTION_KEY must be at least {MIN_SECRET_LENGTH} characters long")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=ITERATIONS,
        )
        return kdf.derive(self._secret.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string into a salt:nonce:ciphertext:tag envelope."""
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return SEPARATOR.join(
            base64.b64encode(part).decode("ascii")
            for part in (salt, nonce, ciphertext, tag)
        )

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by encrypt().

        Raises CryptoError on a malformed envelope, a wrong key or an
        authentication tag mismatch. Never returns partial plaintext.
        """
        if not isinstance(envelope, str):
            raise CryptoError("Credential envelope must be a string")

        parts = envelope.split(SEPARATOR)
        if len(parts) != 4:
            raise CryptoError("Invalid credential envelope format")

        try:
            salt, nonce, ciphertext, tag = (
                base64.b64decode(part, validate=True) for part in parts
            )
        except (binascii.Error, ValueError) as exc:
            raise CryptoError("Credential envelope is not valid base64") from exc

        if len(salt) != SALT_LENGTH or len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
            raise CryptoError("Credential envelope has invalid segment lengths")

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise CryptoError("Credential envelope failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CryptoError("Decrypted credential is not valid UTF-8") from exc

    def encrypt_optional(self, plaintext: str | None) -> str | None:
        return self.encrypt(plaintext) if plaintext else None
