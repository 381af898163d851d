"""
Envelope encryption for snapshots.

A fresh data key is generated by the key service for every encryption. The
plaintext data key seals the snapshot with AES-256-GCM; only the wrapped
(KMS-encrypted) copy of the key is stored next to the ciphertext.

Key buffer
- The cipher takes a 32-byte key. Whatever the key service returns is copied
  into a 32-byte buffer, zero-padding the remainder. With the default
  `AES_256` key spec the buffer is filled completely; with `AES_128` the upper
  16 bytes stay zero and the effective key strength is 128 bits.

Nonce
- 24 random bytes per call. AES-GCM accepts nonces longer than 96 bits by
  hashing them into the initial counter block.

Associated data
- The payload header (format tag + wrapped key) is authenticated, so a
  modified wrapped key fails the tag check even if the key service would
  unwrap it to the same key.
"""

from __future__ import annotations

import logging
import os
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from common.errors import AuthenticationFailed, RandomnessUnavailable
from .codec import NONCE_SIZE, SealedPayload, decode, encode, header
from .kms import KeyService


logger = logging.getLogger(__name__)

KEY_SIZE = 32
DEFAULT_KEY_SPEC = "AES_256"


def _key_buffer(data_key: bytes) -> bytes:
    buf = bytearray(KEY_SIZE)
    chunk = bytes(data_key[:KEY_SIZE])
    buf[: len(chunk)] = chunk
    return bytes(buf)


class EnvelopeEncryptor:
    def __init__(
        self,
        key_service: KeyService,
        *,
        key_spec: str = DEFAULT_KEY_SPEC,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        self._keys = key_service
        self._key_spec = key_spec
        self._random = random_bytes

    def encrypt(self, plaintext: bytes, key_id: str) -> SealedPayload:
        """Seal `plaintext` under a new data key generated for `key_id`.

        Raises KeyServiceError if no data key could be obtained and
        RandomnessUnavailable if a nonce could not be drawn.
        """
        data_key = self._keys.generate_data_key(key_id, self._key_spec)
        nonce = self._nonce()

        # Ciphertext is filled in after sealing; the header only covers the key.
        draft = SealedPayload(wrapped_key=data_key.wrapped, nonce=nonce, ciphertext=b"")
        ciphertext = AESGCM(_key_buffer(data_key.plaintext)).encrypt(
            nonce, bytes(plaintext), header(draft)
        )
        logger.debug("Sealed %d bytes (%s data key)", len(plaintext), self._key_spec)
        return SealedPayload(wrapped_key=data_key.wrapped, nonce=nonce, ciphertext=ciphertext)

    def encrypt_bytes(self, plaintext: bytes, key_id: str) -> bytes:
        return encode(self.encrypt(plaintext, key_id))

    def _nonce(self) -> bytes:
        try:
            nonce = self._random(NONCE_SIZE)
        except (OSError, NotImplementedError) as exc:
            raise RandomnessUnavailable(f"Could not read {NONCE_SIZE} random bytes: {exc}") from exc
        if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != NONCE_SIZE:
            raise RandomnessUnavailable(f"Random source returned fewer than {NONCE_SIZE} bytes")
        return bytes(nonce)


class EnvelopeDecryptor:
    def __init__(self, key_service: KeyService) -> None:
        self._keys = key_service

    def decrypt(self, payload: SealedPayload) -> bytes:
        """Recover the plaintext of `payload`; all-or-nothing.

        Raises KeyServiceError if the data key cannot be unwrapped and
        AuthenticationFailed if the payload fails its integrity check.
        """
        data_key = self._keys.unwrap(payload.wrapped_key)
        try:
            plaintext = AESGCM(_key_buffer(data_key)).decrypt(
                payload.nonce, payload.ciphertext, header(payload)
            )
        except InvalidTag as exc:
            raise AuthenticationFailed("Snapshot failed integrity check (wrong key or corrupted data)") from exc
        logger.debug("Opened %d bytes", len(plaintext))
        return plaintext

    def decrypt_bytes(self, data: bytes) -> bytes:
        return self.decrypt(decode(data))


__all__ = ["EnvelopeEncryptor", "EnvelopeDecryptor", "KEY_SIZE", "DEFAULT_KEY_SPEC"]
