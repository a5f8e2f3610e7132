# src/s3_sync/store.py
"""
Object store access.

The reconciliation engine and transfer executor only depend on the small
`ObjectStore` protocol defined here. `S3ObjectStore` implements it on top of an
aiobotocore S3 client; authentication, retries and listing pagination are left
to botocore.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
)

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from s3_sync.config import Config, S3Config
from s3_sync.exceptions import RemoteError

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator

logger: logging.Logger = logging.getLogger(__name__)

# HTTP header name -> put_object parameter name
_HEADER_PARAMS: Dict[str, str] = {
    "Cache-Control": "CacheControl",
    "Expires": "Expires",
    "Content-Encoding": "ContentEncoding",
    "Content-Disposition": "ContentDisposition",
    "Content-Language": "ContentLanguage",
}


def normalize_etag(etag: Optional[str]) -> str:
    """Strip the surrounding quotes S3 puts around ETag values."""
    return (etag or "").strip().strip('"')


@dataclass(frozen=True)
class RemoteObjectRecord:
    """
    A snapshot of one remote object's metadata.

    Attributes:
        key (str): The object key relative to the configured prefix.
        last_modified (datetime): The object's last-modified timestamp.
        etag (str): The ETag without surrounding quotes.
    """

    key: str
    last_modified: datetime
    etag: str


class ObjectStore(Protocol):
    """The narrow store interface the sync engine depends on."""

    async def list_objects(self) -> List[RemoteObjectRecord]: ...

    async def head_object(self, key: str) -> RemoteObjectRecord: ...

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        headers: Mapping[str, str],
        acl: Optional[str],
    ) -> None: ...

    async def delete_object(self, key: str) -> None: ...


class S3ObjectStore:
    """An `ObjectStore` backed by an aiobotocore S3 client."""

    def __init__(self, client: "S3Client", s3_config: S3Config) -> None:
        """
        Args:
            client (S3Client): An open aiobotocore S3 client.
            s3_config (S3Config): Bucket and prefix of the target.
        """
        self._client: "S3Client" = client
        self._bucket: str = s3_config.bucket
        self._prefix: str = s3_config.prefix

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _relative_key(self, full_key: str) -> str:
        return full_key[len(self._prefix) :]

    async def list_objects(self) -> List[RemoteObjectRecord]:
        """
        List every object under the configured prefix.

        Returns:
            List[RemoteObjectRecord]: One record per object.

        Raises:
            RemoteError: If a listing request fails.
        """
        paginator: "ListObjectsV2Paginator" = self._client.get_paginator(
            "list_objects_v2"
        )
        records: List[RemoteObjectRecord] = []
        try:
            async for page in paginator.paginate(
                Bucket=self._bucket, Prefix=self._prefix
            ):
                for content in page.get("Contents", []):
                    key: str = self._relative_key(content["Key"])
                    # Skip "folder" placeholder objects
                    if not key or key.endswith("/"):
                        continue
                    records.append(
                        RemoteObjectRecord(
                            key=key,
                            last_modified=content["LastModified"],
                            etag=normalize_etag(content.get("ETag")),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            raise RemoteError(
                f"Failed to list 's3://{self._bucket}/{self._prefix}': {e}"
            ) from e
        return records

    async def head_object(self, key: str) -> RemoteObjectRecord:
        """
        Fetch the metadata of a single object.

        Args:
            key (str): The relative object key.

        Returns:
            RemoteObjectRecord: The object's metadata.
        """
        try:
            response: Dict[str, Any] = await self._client.head_object(
                Bucket=self._bucket, Key=self._full_key(key)
            )
        except (ClientError, BotoCoreError) as e:
            raise RemoteError(f"Failed to read metadata of '{key}': {e}") from e
        return RemoteObjectRecord(
            key=key,
            last_modified=response["LastModified"],
            etag=normalize_etag(response.get("ETag")),
        )

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        headers: Mapping[str, str],
        acl: Optional[str],
    ) -> None:
        """
        Upload (or fully replace) an object.

        Args:
            key (str): The relative object key.
            body (bytes): The object content.
            content_type (str): The `Content-Type` of the object.
            headers (Mapping[str, str]): Extra HTTP headers such as
                `Cache-Control` or `Expires`.
            acl (str, optional): Canned ACL, e.g. `public-read`.
        """
        params: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": self._full_key(key),
            "Body": body,
            "ContentLength": len(body),
            "ContentType": content_type,
        }
        if acl:
            params["ACL"] = acl
        for header, value in headers.items():
            param: Optional[str] = _HEADER_PARAMS.get(header)
            if param is None:
                logger.warning(f"Ignoring unsupported header '{header}' for '{key}'.")
                continue
            params[param] = value
        try:
            await self._client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise RemoteError(f"Failed to upload '{key}': {e}") from e

    async def delete_object(self, key: str) -> None:
        """
        Remove an object.

        Args:
            key (str): The relative object key.
        """
        try:
            await self._client.delete_object(
                Bucket=self._bucket, Key=self._full_key(key)
            )
        except (ClientError, BotoCoreError) as e:
            raise RemoteError(f"Failed to delete '{key}': {e}") from e


@asynccontextmanager
async def open_s3_store(
    config: Config, session: Optional[AioSession] = None
) -> AsyncIterator[S3ObjectStore]:
    """
    Open an aiobotocore client for the configured bucket.

    Args:
        config (Config): The application configuration.
        session (AioSession, optional): Session to create the client from.

    Yields:
        S3ObjectStore: A store bound to the open client.
    """
    # Explicitly set signature_version and disable payload signing. This is
    # the robust configuration for non-AWS S3 providers that require
    # Content-Length and support SigV4.
    boto_config: BotoConfig = BotoConfig(
        signature_version="s3v4",
        max_pool_connections=config.app.transfer_concurrency
        + config.app.mtime_concurrency,
        retries={"max_attempts": config.app.transfer_max_attempts},
        s3={"payload_signing_enabled": False},
    )
    session = session or get_session()
    async with session.create_client(
        "s3", **config.store.as_boto_dict(), config=boto_config
    ) as client:
        yield S3ObjectStore(client, config.store)
