"""
Common utilities for consul-s3-snapshot.

Modules:
- errors: error taxonomy, one class per failing stage
- config: pydantic settings for S3, KMS and Consul
- consul: Consul snapshot API client
"""

__all__ = [
    "errors",
    "config",
    "consul",
]
