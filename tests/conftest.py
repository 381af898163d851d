import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*`, `envelope.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


class FakeKeyService:
    """In-memory stand-in for KMS.

    Data keys are random; wrapped keys are opaque random tokens remembered in a
    dict, so only blobs this service produced can be unwrapped.
    """

    KEY_SIZES = {"AES_256": 32, "AES_128": 16}

    def __init__(self) -> None:
        self._keys = {}
        self.generate_calls = []
        self.unwrap_calls = 0

    def generate_data_key(self, key_id, key_spec):
        from envelope.kms import DataKey

        self.generate_calls.append((key_id, key_spec))
        plaintext = os.urandom(self.KEY_SIZES[key_spec])
        wrapped = b"kms:" + key_id.encode("utf-8") + b":" + os.urandom(16)
        self._keys[wrapped] = plaintext
        return DataKey(plaintext=plaintext, wrapped=wrapped)

    def unwrap(self, wrapped):
        from common.errors import AuthenticationFailed

        self.unwrap_calls += 1
        try:
            return self._keys[bytes(wrapped)]
        except KeyError:
            raise AuthenticationFailed("unknown wrapped key") from None

    def plaintext_for(self, wrapped):
        return self._keys[bytes(wrapped)]


@pytest.fixture
def key_service() -> FakeKeyService:
    return FakeKeyService()
