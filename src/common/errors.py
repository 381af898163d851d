from __future__ import annotations


class SnapshotToolError(RuntimeError):
    """Base error for consul-s3-snapshot.

    Every subclass names the pipeline `stage` it comes from so the CLI can
    print a one-line diagnostic.
    """

    stage = "snapshot-tool"


class ConfigurationError(SnapshotToolError):
    """Required flag combination missing (e.g. .enc path without --kms-region)."""

    stage = "config"


class StoreError(SnapshotToolError):
    """Consul snapshot/restore API failure."""

    stage = "consul"


class KeyServiceError(SnapshotToolError):
    """KMS data-key generation or unwrap failed."""

    stage = "kms"


class RandomnessUnavailable(SnapshotToolError):
    """The OS could not provide enough random bytes for a nonce."""

    stage = "encrypt"


class MalformedPayload(SnapshotToolError):
    """Bytes could not be parsed into a SealedPayload."""

    stage = "decode"


class AuthenticationFailed(SnapshotToolError):
    """Integrity check failed while opening a sealed payload."""

    stage = "decrypt"


class BlobStoreError(SnapshotToolError):
    """S3 upload/download failed."""

    stage = "s3"


__all__ = [
    "SnapshotToolError",
    "ConfigurationError",
    "StoreError",
    "KeyServiceError",
    "RandomnessUnavailable",
    "MalformedPayload",
    "AuthenticationFailed",
    "BlobStoreError",
]
