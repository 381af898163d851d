from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from common.config import RestoreConfig, SaveConfig
from common.consul import Snapshot
from common.errors import ConfigurationError
from envelope.cipher import EnvelopeDecryptor, EnvelopeEncryptor
from envelope.kms import KeyService, KmsKeyService
from storage.s3_store import BlobStore


logger = logging.getLogger(__name__)

ENCRYPTED_SUFFIX = ".enc"
PLAIN_SUFFIX = ".zip"
ENCRYPTED_CONTENT_TYPE = "application/octet-stream"
# Consul snapshots are gzipped tar archives despite the .zip suffix.
PLAIN_CONTENT_TYPE = "application/gzip"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class SnapshotStore(Protocol):
    def save(self) -> Snapshot: ...

    def restore(self, data: bytes) -> None: ...


KeyServiceFactory = Callable[[str], KeyService]


def kms_key_service(region: str) -> KeyService:
    return KmsKeyService(region_name=region)


@dataclass
class ObjectName:
    key: str
    content_type: str


@dataclass
class SaveResult:
    location: str
    key: str
    index: int
    encrypted: bool
    content_type: str


@dataclass
class RestoreResult:
    location: str
    encrypted: bool
    size: int


def build_object_name(prefix: str, index: int, when: datetime, *, encrypted: bool) -> ObjectName:
    """`{prefix}{index}-{YYYYMMDD-HHMMSS}` plus `.enc` or `.zip`."""
    base = f"{prefix}{index}-{when.strftime(TIMESTAMP_FORMAT)}"
    if encrypted:
        return ObjectName(key=f"{base}{ENCRYPTED_SUFFIX}", content_type=ENCRYPTED_CONTENT_TYPE)
    return ObjectName(key=f"{base}{PLAIN_SUFFIX}", content_type=PLAIN_CONTENT_TYPE)


def is_encrypted_name(path: str) -> bool:
    return path.endswith(ENCRYPTED_SUFFIX)


def save_snapshot(
    config: SaveConfig,
    *,
    consul: SnapshotStore,
    blobs: BlobStore,
    key_service_factory: KeyServiceFactory = kms_key_service,
    clock: Callable[[], datetime] = datetime.now,
) -> SaveResult:
    """Snapshot Consul, optionally seal it with KMS, and upload it to S3."""
    key_arn = config.kms.key_arn
    if key_arn and not config.kms.region:
        raise ConfigurationError("--kms-region required when using --kms-key-arn")

    snapshot = consul.save()
    name = build_object_name(config.prefix, snapshot.index, clock(), encrypted=bool(key_arn))

    body = snapshot.data
    if key_arn:
        logger.info("KMS enabled, using %s", key_arn)
        encryptor = EnvelopeEncryptor(
            key_service_factory(config.kms.region), key_spec=config.kms.key_spec
        )
        body = encryptor.encrypt_bytes(snapshot.data, key_arn)
    else:
        logger.info("KMS not enabled")

    location = blobs.put(name.key, body, name.content_type)
    logger.info("Uploaded snapshot at index %d to %s", snapshot.index, location)
    return SaveResult(
        location=location,
        key=name.key,
        index=snapshot.index,
        encrypted=bool(key_arn),
        content_type=name.content_type,
    )


def restore_snapshot(
    config: RestoreConfig,
    *,
    consul: SnapshotStore,
    blobs: BlobStore,
    key_service_factory: KeyServiceFactory = kms_key_service,
) -> RestoreResult:
    """Download a snapshot from S3, decrypt `.enc` objects, and restore Consul."""
    encrypted = is_encrypted_name(config.path)
    region: Optional[str] = config.kms.region
    if encrypted and not region:
        raise ConfigurationError("Must specify --kms-region when restoring an encrypted backup")

    content = blobs.get(config.path)
    if encrypted:
        content = EnvelopeDecryptor(key_service_factory(region)).decrypt_bytes(content)

    consul.restore(content)
    location = blobs.location(config.path)
    logger.info("Restored from %s", location)
    return RestoreResult(location=location, encrypted=encrypted, size=len(content))


__all__ = [
    "ObjectName",
    "SaveResult",
    "RestoreResult",
    "SnapshotStore",
    "build_object_name",
    "is_encrypted_name",
    "kms_key_service",
    "save_snapshot",
    "restore_snapshot",
]
