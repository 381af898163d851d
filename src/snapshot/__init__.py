"""
Save and restore pipelines for Consul snapshots in S3.

Modules:
- pipeline: save/restore orchestration and object naming
- cli: `consul-s3-snapshot save|restore` entry point
"""

__all__ = [
    "pipeline",
    "cli",
]
