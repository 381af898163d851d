"""
Object storage for snapshot blobs.

Snapshots are uploaded and downloaded whole; the S3 implementation goes
through boto3's managed transfer.
"""

from .s3_store import BlobStore, S3BlobStore

__all__ = ["BlobStore", "S3BlobStore"]
