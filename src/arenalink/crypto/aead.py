from __future__ import annotations
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from arenalink.client.errors import AuthenticationError, DecodeError
from arenalink.crypto.primitives import raw_b64d, raw_b64e
from arenalink.protocol.constants import KEY_BYTES, NONCE_BYTES, TAG_BYTES


class AEADCipher:
    """AES-256-GCM with a fresh random nonce prepended to every ciphertext."""

    nonce_size = NONCE_BYTES

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ValueError(f"key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    def seal(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(self.nonce_size)
        return nonce + self._aead.encrypt(nonce, plaintext, None)

    def open(self, sealed: bytes) -> bytes:
        if len(sealed) < self.nonce_size + TAG_BYTES:
            raise AuthenticationError("sealed buffer too short", actual=len(sealed))
        nonce, ciphertext = sealed[:self.nonce_size], sealed[self.nonce_size:]
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise AuthenticationError("message authentication failed") from e

    def seal_b64(self, plaintext: str) -> str:
        return raw_b64e(self.seal(plaintext.encode("utf-8"))).decode("ascii")

    def open_b64(self, sealed_b64: str) -> str:
        try:
            sealed = raw_b64d(sealed_b64)
        except ValueError as e:
            raise DecodeError(f"invalid cipher text encoding: {e}") from e
        return self.open(sealed).decode("utf-8", errors="replace")
