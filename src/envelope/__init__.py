"""
Envelope encryption for Consul snapshots.

A per-snapshot data key comes from KMS, seals the snapshot with AES-256-GCM,
and is stored wrapped alongside the ciphertext in a `SealedPayload`.
"""

from .codec import SealedPayload, decode, encode
from .cipher import EnvelopeDecryptor, EnvelopeEncryptor
from .kms import DataKey, KeyService, KmsKeyService

__all__ = [
    "SealedPayload",
    "encode",
    "decode",
    "EnvelopeEncryptor",
    "EnvelopeDecryptor",
    "DataKey",
    "KeyService",
    "KmsKeyService",
]
