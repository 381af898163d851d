from __future__ import annotations

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field


# Environment variables read the same way the Consul API client reads them
ENV_CONSUL_ADDR = "CONSUL_HTTP_ADDR"
ENV_CONSUL_TOKEN = "CONSUL_HTTP_TOKEN"
ENV_CONSUL_SSL = "CONSUL_HTTP_SSL"

DEFAULT_CONSUL_ADDR = "127.0.0.1:8500"

KeySpec = Literal["AES_256", "AES_128"]


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


class S3Settings(BaseModel):
    bucket: str = Field(..., min_length=1, description="S3 bucket name")
    region: str = Field(..., min_length=1, description="S3 bucket region")


class KmsSettings(BaseModel):
    """
    KMS options for envelope encryption.

    Notes
    - `region` is required whenever KMS is actually used: on save when
      `key_arn` is set, on restore when the object name ends with `.enc`.
      That check lives in the pipeline so it can fail before any network call.
    - `key_spec` defaults to a 256-bit data key; `AES_128` reproduces the
      older 128-bit-key convention (still zero-padded to 32 bytes).
    """

    region: Optional[str] = None
    key_arn: Optional[str] = None
    key_spec: KeySpec = "AES_256"


class ConsulSettings(BaseModel):
    address: str = DEFAULT_CONSUL_ADDR
    token: Optional[str] = None
    scheme: Literal["http", "https"] = "http"
    timeout: float = Field(default=60.0, gt=0)

    @property
    def base_url(self) -> str:
        if "://" in self.address:
            return self.address.rstrip("/")
        return f"{self.scheme}://{self.address.rstrip('/')}"

    @classmethod
    def from_env(cls, *, address: Optional[str] = None) -> "ConsulSettings":
        ssl = (_getenv(ENV_CONSUL_SSL, "") or "").strip().lower() in ("1", "true", "yes")
        return cls(
            address=address or _getenv(ENV_CONSUL_ADDR, DEFAULT_CONSUL_ADDR),
            token=_getenv(ENV_CONSUL_TOKEN),
            scheme="https" if ssl else "http",
        )


class SaveConfig(BaseModel):
    s3: S3Settings
    kms: KmsSettings = Field(default_factory=KmsSettings)
    prefix: str = Field(..., description="Object name prefix, e.g. 'consul/backup-'")


class RestoreConfig(BaseModel):
    s3: S3Settings
    kms: KmsSettings = Field(default_factory=KmsSettings)
    path: str = Field(..., min_length=1, description="Object key to restore from")


__all__ = [
    "KeySpec",
    "S3Settings",
    "KmsSettings",
    "ConsulSettings",
    "SaveConfig",
    "RestoreConfig",
]
