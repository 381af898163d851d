from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError, InvalidRegionError

from common.errors import AuthenticationFailed, ConfigurationError, KeyServiceError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataKey:
    plaintext: bytes
    wrapped: bytes

    def __repr__(self) -> str:  # keep key material out of logs and tracebacks
        return f"DataKey(plaintext=<{len(self.plaintext)} bytes>, wrapped=<{len(self.wrapped)} bytes>)"


class KeyService(Protocol):
    def generate_data_key(self, key_id: str, key_spec: str) -> DataKey: ...

    def unwrap(self, wrapped: bytes) -> bytes: ...


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


class KmsKeyService:
    """
    AWS KMS implementation of `KeyService`.

    - `generate_data_key` calls GenerateDataKey and returns both the plaintext
      key and its CiphertextBlob.
    - `unwrap` calls Decrypt. KMS answers `InvalidCiphertextException` when the
      blob was tampered with or belongs to another key; that is reported as
      `AuthenticationFailed`. Every other failure is `KeyServiceError`.
    """

    def __init__(self, *, region_name: Optional[str] = None, kms: Optional[object] = None) -> None:
        if kms is None:
            try:
                kms = boto3.client("kms", region_name=region_name)
            except InvalidRegionError as e:
                raise ConfigurationError(f"Invalid --kms-region {region_name!r}") from e
            except BotoCoreError as e:
                raise KeyServiceError(f"Failed to create KMS client: {e}") from e
        self._kms = kms

    def generate_data_key(self, key_id: str, key_spec: str) -> DataKey:
        try:
            resp = self._kms.generate_data_key(KeyId=key_id, KeySpec=key_spec)
        except ClientError as e:
            raise KeyServiceError(
                f"GenerateDataKey failed for {key_id}: {_error_code(e) or e}"
            ) from e
        except BotoCoreError as e:
            raise KeyServiceError(f"GenerateDataKey failed for {key_id}: {e}") from e

        plaintext = resp.get("Plaintext")
        wrapped = resp.get("CiphertextBlob")
        if not plaintext or not wrapped:
            raise KeyServiceError("GenerateDataKey response missing Plaintext or CiphertextBlob")
        logger.debug("Generated %s data key from %s", key_spec, resp.get("KeyId", key_id))
        return DataKey(plaintext=plaintext, wrapped=wrapped)

    def unwrap(self, wrapped: bytes) -> bytes:
        try:
            resp = self._kms.decrypt(CiphertextBlob=wrapped)
        except ClientError as e:
            code = _error_code(e)
            if code == "InvalidCiphertextException":
                raise AuthenticationFailed("KMS rejected the wrapped data key") from e
            raise KeyServiceError(f"Decrypt failed: {code or e}") from e
        except BotoCoreError as e:
            raise KeyServiceError(f"Decrypt failed: {e}") from e

        plaintext = resp.get("Plaintext")
        if not plaintext:
            raise KeyServiceError("Decrypt response missing Plaintext")
        return plaintext


__all__ = ["DataKey", "KeyService", "KmsKeyService"]
