# src/s3_sync/config.py
"""
Configuration for the s3-sync pipeline.

This module centralizes all configuration, loading sensitive values from
environment variables and providing typed, validated dataclasses for use
throughout the application. Validation happens once, when the objects are
built, so a missing bucket or credential fails the run before any work.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from s3_sync.exceptions import ConfigError
from s3_sync.policy import HeaderPolicyTable


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_optional_env_var(name: str) -> Optional[str]:
    return os.environ.get(name) or None


def normalize_prefix(prefix: Optional[str]) -> str:
    """
    Turn a user supplied key prefix into `some/prefix/` form.

    Args:
        prefix (str, optional): The raw prefix.

    Returns:
        str: The normalized prefix, or an empty string for the bucket root.
    """
    if not prefix:
        return ""
    stripped: str = prefix.strip().strip("/")
    return f"{stripped}/" if stripped else ""


@dataclass(frozen=True)
class S3Config:
    """
    Represents the configuration for an S3-compatible endpoint.

    Attributes:
        bucket (str): The bucket name.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        region (str): The AWS region.
        endpoint_url (str, optional): Custom endpoint for S3-compatible
            services. None means the AWS default.
        prefix (str): Key prefix under which the build directory is mirrored.
    """

    bucket: str
    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    prefix: str = ""

    def __post_init__(self) -> None:
        for name in ("bucket", "access_key_id", "secret_access_key", "region"):
            if not getattr(self, name):
                raise ConfigError(f"S3 setting '{name}' must not be empty.")
        object.__setattr__(self, "prefix", normalize_prefix(self.prefix))

    @classmethod
    def from_env(cls) -> "S3Config":
        """
        Build the store configuration from `S3SYNC_*` environment variables.

        Returns:
            S3Config: The loaded configuration.
        """
        return cls(
            bucket=_get_env_var("S3SYNC_BUCKET"),
            access_key_id=_get_env_var("S3SYNC_ACCESS_KEY_ID"),
            secret_access_key=_get_env_var("S3SYNC_SECRET_ACCESS_KEY"),
            region=_get_env_var("S3SYNC_REGION", "us-east-1"),
            endpoint_url=_get_optional_env_var("S3SYNC_ENDPOINT_URL"),
            prefix=os.environ.get("S3SYNC_PREFIX", ""),
        )

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        params: Dict[str, str] = {
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }
        if self.endpoint_url:
            params["endpoint_url"] = self.endpoint_url
        return params


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        build_dir (Path): The local directory mirrored into the bucket.
        force (bool): Push every local file regardless of remote state.
        delete (bool): Delete remote objects that have no local counterpart.
        prefer_gzip (bool): Upload `<file>.gz` siblings in place of `<file>`.
        exclude (Tuple[str, ...]): Glob patterns removed from consideration.
        acl (str): Canned ACL applied to uploaded objects.
        dry_run (bool): Compute and report the plan without mutating the bucket.
        verify_uploads (bool): Compare the remote ETag with the local MD5
            after each upload.
        mtime_concurrency (int): Worker count for the timestamp pre-filter.
        checksum_concurrency (int): Worker count for checksum comparison.
        transfer_concurrency (int): Worker count for uploads and deletions.
        transfer_max_attempts (int): Max botocore attempts per request.
        policies (HeaderPolicyTable): Header policies by content type.
    """

    build_dir: Path = field(default_factory=lambda: Path("build"))
    force: bool = False
    delete: bool = False
    prefer_gzip: bool = False
    exclude: Tuple[str, ...] = ()
    acl: str = "public-read"
    dry_run: bool = False
    verify_uploads: bool = True
    mtime_concurrency: int = 16
    checksum_concurrency: int = 8
    transfer_concurrency: int = 8
    transfer_max_attempts: int = 5
    # The table is filled while building the config; keep it out of the hash
    policies: HeaderPolicyTable = field(
        default_factory=HeaderPolicyTable, hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "build_dir", Path(self.build_dir))
        object.__setattr__(self, "exclude", tuple(self.exclude))
        for name in (
            "mtime_concurrency",
            "checksum_concurrency",
            "transfer_concurrency",
            "transfer_max_attempts",
        ):
            if getattr(self, name) < 1:
                raise ConfigError(f"'{name}' must be at least 1.")


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        store (S3Config): Configuration for the target S3-compatible bucket.
        app (AppConfig): General application settings.
    """

    store: S3Config = field(default_factory=S3Config.from_env)
    app: AppConfig = field(default_factory=AppConfig)
