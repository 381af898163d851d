from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Tuple

import pytest

from common.config import KmsSettings, RestoreConfig, S3Settings, SaveConfig
from common.consul import Snapshot
from common.errors import AuthenticationFailed, BlobStoreError, ConfigurationError
from envelope.codec import decode
from snapshot.pipeline import (
    build_object_name,
    is_encrypted_name,
    restore_snapshot,
    save_snapshot,
)


FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0)
KEY_ARN = "arn:aws:kms:us-east-1:111122223333:key/abcd"
S3 = S3Settings(bucket="snapshots", region="us-east-1")


class _FakeConsul:
    def __init__(self, *, data: bytes = b"\x1f\x8bconsul-state", index: int = 42) -> None:
        self._snapshot = Snapshot(data=data, index=index)
        self.saves = 0
        self.restored: List[bytes] = []

    def save(self) -> Snapshot:
        self.saves += 1
        return self._snapshot

    def restore(self, data: bytes) -> None:
        self.restored.append(data)


class _FakeBlobs:
    def __init__(self) -> None:
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.gets = 0

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.objects[key] = (data, content_type)
        return f"s3://snapshots/{key}"

    def get(self, key: str) -> bytes:
        self.gets += 1
        if key not in self.objects:
            raise BlobStoreError(f"Failed to download s3://snapshots/{key}: 404")
        return self.objects[key][0]

    def location(self, key: str) -> str:
        return f"s3://snapshots/{key}"


class _FactoryRecorder:
    def __init__(self, key_service) -> None:
        self._svc = key_service
        self.regions: List[str] = []

    def __call__(self, region: str):
        self.regions.append(region)
        return self._svc


def _fail_factory(region: str):
    raise AssertionError(f"key service must not be built (region={region!r})")


def test_object_name_plain():
    name = build_object_name("backup-", 42, FIXED_NOW, encrypted=False)
    assert name.key == "backup-42-20240101-120000.zip"
    assert name.content_type == "application/gzip"


def test_object_name_encrypted():
    name = build_object_name("backup-", 42, FIXED_NOW, encrypted=True)
    assert name.key == "backup-42-20240101-120000.enc"
    assert name.content_type == "application/octet-stream"


def test_is_encrypted_name_only_checks_suffix():
    assert is_encrypted_name("backup-42-20240101-120000.enc")
    assert not is_encrypted_name("backup-42-20240101-120000.zip")
    assert not is_encrypted_name("backup.enc.zip")


def test_save_without_key_uploads_raw_snapshot():
    consul, blobs = _FakeConsul(), _FakeBlobs()
    config = SaveConfig(s3=S3, prefix="backup-")

    result = save_snapshot(
        config, consul=consul, blobs=blobs, key_service_factory=_fail_factory, clock=lambda: FIXED_NOW
    )

    assert result.key == "backup-42-20240101-120000.zip"
    assert result.location == "s3://snapshots/backup-42-20240101-120000.zip"
    assert result.encrypted is False
    assert blobs.objects[result.key] == (b"\x1f\x8bconsul-state", "application/gzip")


def test_save_with_key_uploads_sealed_payload(key_service):
    consul, blobs = _FakeConsul(), _FakeBlobs()
    factory = _FactoryRecorder(key_service)
    config = SaveConfig(s3=S3, kms=KmsSettings(region="eu-west-1", key_arn=KEY_ARN), prefix="backup-")

    result = save_snapshot(config, consul=consul, blobs=blobs, key_service_factory=factory, clock=lambda: FIXED_NOW)

    assert result.key == "backup-42-20240101-120000.enc"
    assert result.encrypted is True
    assert factory.regions == ["eu-west-1"]
    body, content_type = blobs.objects[result.key]
    assert content_type == "application/octet-stream"
    assert b"consul-state" not in body
    assert decode(body).wrapped_key.startswith(b"kms:" + KEY_ARN.encode())
    assert key_service.generate_calls == [(KEY_ARN, "AES_256")]


def test_save_key_without_region_fails_before_snapshot():
    consul, blobs = _FakeConsul(), _FakeBlobs()
    config = SaveConfig(s3=S3, kms=KmsSettings(key_arn=KEY_ARN), prefix="backup-")

    with pytest.raises(ConfigurationError):
        save_snapshot(config, consul=consul, blobs=blobs, key_service_factory=_fail_factory)
    assert consul.saves == 0
    assert blobs.objects == {}


def test_save_then_restore_encrypted_roundtrip(key_service):
    consul, blobs = _FakeConsul(data=b"\x1f\x8b" + bytes(range(256)) * 10), _FakeBlobs()
    factory = _FactoryRecorder(key_service)
    kms = KmsSettings(region="us-east-1", key_arn=KEY_ARN)

    saved = save_snapshot(
        SaveConfig(s3=S3, kms=kms, prefix="dc1/"), consul=consul, blobs=blobs, key_service_factory=factory
    )
    restored = restore_snapshot(
        RestoreConfig(s3=S3, kms=KmsSettings(region="us-east-1"), path=saved.key),
        consul=consul,
        blobs=blobs,
        key_service_factory=factory,
    )

    assert restored.encrypted is True
    assert restored.location == f"s3://snapshots/{saved.key}"
    assert consul.restored == [b"\x1f\x8b" + bytes(range(256)) * 10]


def test_restore_plain_skips_key_service():
    consul, blobs = _FakeConsul(), _FakeBlobs()
    blobs.put("backup-1-20240101-120000.zip", b"raw-snapshot", "application/gzip")
    blobs.location = lambda key: f"fake://store/{key}"

    result = restore_snapshot(
        RestoreConfig(s3=S3, path="backup-1-20240101-120000.zip"),
        consul=consul,
        blobs=blobs,
        key_service_factory=_fail_factory,
    )

    assert result.encrypted is False
    assert result.size == len(b"raw-snapshot")
    assert result.location == "fake://store/backup-1-20240101-120000.zip"
    assert consul.restored == [b"raw-snapshot"]


def test_restore_encrypted_without_region_fails_before_any_call():
    consul, blobs = _FakeConsul(), _FakeBlobs()

    with pytest.raises(ConfigurationError):
        restore_snapshot(
            RestoreConfig(s3=S3, path="backup-42-20240101-120000.enc"),
            consul=consul,
            blobs=blobs,
            key_service_factory=_fail_factory,
        )
    assert blobs.gets == 0
    assert consul.restored == []


def test_restore_tampered_object_leaves_consul_untouched(key_service):
    consul, blobs = _FakeConsul(), _FakeBlobs()
    factory = _FactoryRecorder(key_service)
    saved = save_snapshot(
        SaveConfig(s3=S3, kms=KmsSettings(region="us-east-1", key_arn=KEY_ARN), prefix="b-"),
        consul=consul,
        blobs=blobs,
        key_service_factory=factory,
    )
    body, content_type = blobs.objects[saved.key]
    tampered = bytearray(body)
    tampered[-1] ^= 0xFF
    blobs.objects[saved.key] = (bytes(tampered), content_type)

    with pytest.raises(AuthenticationFailed):
        restore_snapshot(
            RestoreConfig(s3=S3, kms=KmsSettings(region="us-east-1"), path=saved.key),
            consul=consul,
            blobs=blobs,
            key_service_factory=factory,
        )
    assert consul.restored == []


def test_restore_download_failure_propagates():
    consul = _FakeConsul()
    with pytest.raises(BlobStoreError):
        restore_snapshot(
            RestoreConfig(s3=S3, path="missing.zip"),
            consul=consul,
            blobs=_FakeBlobs(),
            key_service_factory=_fail_factory,
        )
    assert consul.restored == []
