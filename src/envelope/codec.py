from __future__ import annotations

import struct
from dataclasses import dataclass

from common.errors import MalformedPayload


MAGIC = b"CSS"
VERSION = 1
NONCE_SIZE = 24

# magic(3) | version(1) | wrapped key length(4)
_HEADER = struct.Struct(">3sBI")
# ciphertext length(8)
_CT_LEN = struct.Struct(">Q")


@dataclass(frozen=True)
class SealedPayload:
    """
    An envelope-encrypted snapshot.

    Fields
    - wrapped_key: the data key as encrypted by KMS (CiphertextBlob).
    - nonce: 24 random bytes, unique per encryption.
    - ciphertext: AEAD output, authentication tag included.
    """

    wrapped_key: bytes
    nonce: bytes
    ciphertext: bytes

    def __post_init__(self) -> None:
        for name in ("wrapped_key", "nonce", "ciphertext"):
            if not isinstance(getattr(self, name), (bytes, bytearray)):
                raise MalformedPayload(f"{name} must be bytes")
        if len(self.nonce) != NONCE_SIZE:
            raise MalformedPayload(f"nonce must be {NONCE_SIZE} bytes, got {len(self.nonce)}")
        if not self.wrapped_key:
            raise MalformedPayload("wrapped_key is empty")


def header(payload: SealedPayload) -> bytes:
    """Format tag and wrapped key; authenticated as associated data."""
    return _HEADER.pack(MAGIC, VERSION, len(payload.wrapped_key)) + bytes(payload.wrapped_key)


def encode(payload: SealedPayload) -> bytes:
    return b"".join(
        (
            header(payload),
            bytes(payload.nonce),
            _CT_LEN.pack(len(payload.ciphertext)),
            bytes(payload.ciphertext),
        )
    )


def decode(data: bytes) -> SealedPayload:
    """Parse bytes produced by `encode`.

    Raises MalformedPayload on any structural problem. Cryptographic validity
    is not checked here.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedPayload(f"expected bytes, got {type(data).__name__}")
    view = memoryview(data)

    if len(view) < _HEADER.size:
        raise MalformedPayload("payload shorter than header")
    magic, version, key_len = _HEADER.unpack_from(view, 0)
    if magic != MAGIC:
        raise MalformedPayload("not a sealed snapshot (bad magic)")
    if version != VERSION:
        raise MalformedPayload(f"unsupported payload version {version}")

    offset = _HEADER.size
    wrapped_key = _take(view, offset, key_len, "wrapped key")
    offset += key_len
    nonce = _take(view, offset, NONCE_SIZE, "nonce")
    offset += NONCE_SIZE
    (ct_len,) = _CT_LEN.unpack(_take(view, offset, _CT_LEN.size, "ciphertext length"))
    offset += _CT_LEN.size
    ciphertext = _take(view, offset, ct_len, "ciphertext")
    offset += ct_len

    if offset != len(view):
        raise MalformedPayload(f"{len(view) - offset} trailing bytes after ciphertext")

    return SealedPayload(wrapped_key=wrapped_key, nonce=nonce, ciphertext=ciphertext)


def _take(view: memoryview, offset: int, size: int, what: str) -> bytes:
    end = offset + size
    if end > len(view):
        raise MalformedPayload(f"truncated {what}: need {size} bytes, have {max(len(view) - offset, 0)}")
    return view[offset:end].tobytes()


__all__ = ["SealedPayload", "NONCE_SIZE", "header", "encode", "decode"]
