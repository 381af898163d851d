from __future__ import annotations

import io
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError, InvalidRegionError
from s3transfer.exceptions import RetriesExceededError, S3UploadFailedError

from common.errors import BlobStoreError, ConfigurationError


logger = logging.getLogger(__name__)

# Managed transfers raise their own exception types on top of botocore's
_TRANSFER_ERRORS = (
    ClientError,
    BotoCoreError,
    Boto3Error,
    RetriesExceededError,
    S3UploadFailedError,
    OSError,
)


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str: ...

    def get(self, key: str) -> bytes: ...

    def location(self, key: str) -> str: ...


@dataclass
class S3ObjectRef:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def _describe(e: Exception) -> str:
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code")
        if code:
            return code
    return str(e)


class S3BlobStore:
    """
    S3-backed blob store for snapshot objects.

    Usage
    - `put(key, data, content_type)` uploads through the managed transfer
      (multipart for large snapshots) and returns the object location.
    - `get(key)` downloads into a temporary file under `tmp_dir` and returns
      its bytes. The temporary file is removed whether or not the download
      succeeds.

    Any S3 or transport failure is raised as `BlobStoreError`.
    """

    def __init__(
        self,
        *,
        bucket: str,
        region_name: Optional[str] = None,
        s3: Optional[object] = None,
        tmp_dir: Optional[os.PathLike[str] | str] = None,
    ) -> None:
        if s3 is None:
            try:
                s3 = boto3.client("s3", region_name=region_name)
            except InvalidRegionError as e:
                raise ConfigurationError(f"Invalid --s3-region {region_name!r}") from e
            except BotoCoreError as e:
                raise BlobStoreError(f"Failed to create S3 client: {e}") from e
        self._s3 = s3
        self._bucket = bucket
        self._tmp_dir = os.fspath(tmp_dir) if tmp_dir is not None else None

    def location(self, key: str) -> str:
        return str(S3ObjectRef(bucket=self._bucket, key=key))

    # -------- Core operations --------
    def put(self, key: str, data: bytes, content_type: str) -> str:
        ref = S3ObjectRef(bucket=self._bucket, key=key)
        try:
            self._s3.upload_fileobj(
                Fileobj=io.BytesIO(data),
                Bucket=ref.bucket,
                Key=ref.key,
                ExtraArgs={"ContentType": content_type},
            )
        except _TRANSFER_ERRORS as e:
            raise BlobStoreError(f"Failed to upload {ref}: {_describe(e)}") from e
        logger.debug("Uploaded %d bytes to %s", len(data), ref)
        return str(ref)

    def get(self, key: str) -> bytes:
        ref = S3ObjectRef(bucket=self._bucket, key=key)
        with tempfile.NamedTemporaryFile(
            prefix="consul-snapshot-", dir=self._tmp_dir, delete=False
        ) as tmp:
            tmp_path = tmp.name
        try:
            with open(tmp_path, "wb") as f:
                self._s3.download_fileobj(Bucket=ref.bucket, Key=ref.key, Fileobj=f)
            with open(tmp_path, "rb") as f:
                data = f.read()
        except _TRANSFER_ERRORS as e:
            raise BlobStoreError(f"Failed to download {ref}: {_describe(e)}") from e
        finally:
            os.remove(tmp_path)
        logger.debug("Downloaded %d bytes from %s", len(data), ref)
        return data


__all__ = ["BlobStore", "S3BlobStore", "S3ObjectRef"]
