"""
ShipLog — Access-token encryption at rest.

Tokens are stored as ``v1.<iv>.<ciphertext>`` (base64url, unpadded),
sealed with AES-256-GCM under SHA-256(SHIPLOG_SECRET_KEY).
"""

from __future__ import annotations

import base64
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shiplog.errors import CredentialError

FORMAT_VERSION = "v1"
IV_BYTES = 12


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded)


class CredentialCipher:
    """Symmetric cipher for the GitHub access tokens kept in the users table."""

    def __init__(self, secret_key: str):
        # Without a key the service still starts; every use fails instead.
        self._aead = AESGCM(hashlib.sha256(secret_key.encode("utf-8")).digest()) if secret_key else None

    @property
    def aead(self) -> AESGCM:
        if self._aead is None:
            raise CredentialError("SHIPLOG_SECRET_KEY is not set")
        return self._aead

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_BYTES)
        ciphertext = self.aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return f"{FORMAT_VERSION}.{_b64url_encode(iv)}.{_b64url_encode(ciphertext)}"

    def decrypt(self, encrypted: str) -> str:
        parts = encrypted.split(".")
        if len(parts) != 3 or parts[0] != FORMAT_VERSION:
            raise CredentialError("invalid encrypted format")

        try:
            iv = _b64url_decode(parts[1])
            ciphertext = _b64url_decode(parts[2])
            return self.aead.decrypt(iv, ciphertext, None).decode("utf-8")
        except (InvalidTag, ValueError) as exc:
            raise CredentialError("decryption failed") from exc
