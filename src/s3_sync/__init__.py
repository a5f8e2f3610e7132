# src/s3_sync/__init__.py
"""
s3-sync: Mirror a local build directory into an S3-compatible bucket.

The package reconciles the files of a build output with the objects of a
bucket, uploading new and changed files with per-content-type cache headers
and optionally deleting orphaned objects. Change detection uses modification
times as a cheap pre-filter and MD5 checksums as the authoritative check.

The primary entry point for programmatic use is the `SyncPipeline` class.
"""

from typing import List

from s3_sync.pipeline import SyncPipeline, SyncSummary

__all__: List[str] = ["SyncPipeline", "SyncSummary"]
