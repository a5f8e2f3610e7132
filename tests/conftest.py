# tests/conftest.py
"""
Pytest configuration and fixtures for the s3-sync test suite.

This module provides:
- An in-memory `ObjectStore` used by the unit tests in place of S3.
- Helpers to lay out a build directory with controlled modification times.
- Docker-based MinIO fixtures and isolated buckets for the e2e tests.
"""

import asyncio
import hashlib
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import (
    Any,
    AsyncGenerator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

import pytest
import pytest_asyncio

from s3_sync.config import AppConfig, Config, S3Config
from s3_sync.exceptions import RemoteError
from s3_sync.store import RemoteObjectRecord

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"

# Reference time shared by tests that compare local and remote timestamps
T0: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# --- In-memory object store ---
@dataclass
class StoredObject:
    """An object held by `InMemoryObjectStore`."""

    body: bytes
    last_modified: datetime
    content_type: str = "application/octet-stream"
    headers: Dict[str, str] = field(default_factory=dict)
    acl: Optional[str] = None

    @property
    def etag(self) -> str:
        return hashlib.md5(self.body).hexdigest()


class InMemoryObjectStore:
    """
    A dict-backed `ObjectStore` that records calls and injects failures.

    Attributes:
        objects (Dict[str, StoredObject]): Current bucket content.
        calls (List[Tuple[str, str]]): (method, key) for every mutation.
        fail_keys (Set[str]): Keys whose put/delete raise `RemoteError`.
        list_error (Exception, optional): Raised by `list_objects` if set.
        max_in_flight (int): Highest number of concurrent mutations seen.
    """

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.objects: Dict[str, StoredObject] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_keys: Set[str] = set()
        self.list_error: Optional[Exception] = None
        self.list_calls: int = 0
        self.max_in_flight: int = 0
        self._in_flight: int = 0
        self._now: datetime = now or T0 + timedelta(days=1)

    def seed(
        self, key: str, body: bytes, last_modified: datetime = T0
    ) -> StoredObject:
        obj: StoredObject = StoredObject(body=body, last_modified=last_modified)
        self.objects[key] = obj
        return obj

    async def _enter(self) -> None:
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        # Yield so that other workers get a chance to overlap
        await asyncio.sleep(0)

    def _leave(self) -> None:
        self._in_flight -= 1

    async def list_objects(self) -> List[RemoteObjectRecord]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [
            RemoteObjectRecord(key=key, last_modified=obj.last_modified, etag=obj.etag)
            for key, obj in sorted(self.objects.items())
        ]

    async def head_object(self, key: str) -> RemoteObjectRecord:
        obj: Optional[StoredObject] = self.objects.get(key)
        if obj is None:
            raise RemoteError(f"Failed to read metadata of '{key}': 404")
        return RemoteObjectRecord(
            key=key, last_modified=obj.last_modified, etag=obj.etag
        )

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        headers: Mapping[str, str],
        acl: Optional[str],
    ) -> None:
        await self._enter()
        try:
            self.calls.append(("put", key))
            if key in self.fail_keys:
                raise RemoteError(f"Failed to upload '{key}': simulated outage")
            self.objects[key] = StoredObject(
                body=body,
                last_modified=self._now,
                content_type=content_type,
                headers=dict(headers),
                acl=acl,
            )
        finally:
            self._leave()

    async def delete_object(self, key: str) -> None:
        await self._enter()
        try:
            self.calls.append(("delete", key))
            if key in self.fail_keys:
                raise RemoteError(f"Failed to delete '{key}': simulated outage")
            self.objects.pop(key, None)
        finally:
            self._leave()


def write_file(
    root: Path, relative_path: str, content: bytes, mtime: datetime = T0
) -> Path:
    """
    Create a file under `root` with an exact modification time.

    Args:
        root (Path): The build directory.
        relative_path (str): `/` separated path below `root`.
        content (bytes): File content.
        mtime (datetime): Modification time; whole seconds keep comparisons
            exact.

    Returns:
        Path: The absolute path of the file.
    """
    path: Path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    timestamp: float = mtime.timestamp()
    os.utime(path, (timestamp, timestamp))
    return path


@pytest.fixture(scope="function")
def memory_store() -> InMemoryObjectStore:
    """Provide an empty in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture(scope="function")
def build_dir(tmp_path: Path) -> Path:
    """Provide an empty build directory."""
    path: Path = tmp_path / "build"
    path.mkdir()
    return path


@pytest.fixture(scope="function")
def s3_config() -> S3Config:
    """Provide a store configuration that never leaves the process."""
    return S3Config(
        bucket="test-bucket",
        access_key_id=S3_ACCESS_KEY,
        secret_access_key=S3_SECRET_KEY,
        region=S3_REGION,
    )


@pytest.fixture(scope="function")
def config_factory(
    build_dir: Path, s3_config: S3Config
) -> Callable[..., Config]:
    """
    Provide a factory building a `Config` for the temporary build directory.

    Keyword arguments are passed on to `AppConfig`.
    """

    def _factory(**overrides: Any) -> Config:
        overrides.setdefault("build_dir", build_dir)
        return Config(store=s3_config, app=AppConfig(**overrides))

    return _factory


def point_environment_at_bucket(
    monkeypatch: pytest.MonkeyPatch, s3_service: Dict[str, Any], bucket: str
) -> None:
    """
    Point the `S3SYNC_*` variables at a bucket for the lifetime of `monkeypatch`.

    Args:
        monkeypatch (pytest.MonkeyPatch): Undoes the changes on teardown.
        s3_service (Dict[str, Any]): Client keyword arguments of the service.
        bucket (str): The bucket name.
    """
    monkeypatch.setenv("S3SYNC_ENDPOINT_URL", s3_service["endpoint_url"])
    monkeypatch.setenv("S3SYNC_ACCESS_KEY_ID", s3_service["aws_access_key_id"])
    monkeypatch.setenv(
        "S3SYNC_SECRET_ACCESS_KEY", s3_service["aws_secret_access_key"]
    )
    monkeypatch.setenv("S3SYNC_BUCKET", bucket)
    monkeypatch.setenv("S3SYNC_REGION", s3_service["region_name"])


# --- Docker Fixtures (e2e only) ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    """Define a static project name for the Docker stack."""
    return "s3-sync-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    import requests

    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except requests.exceptions.ConnectionError:
        return False


@pytest.fixture(scope="session")
def s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the MinIO service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Client keyword arguments for the service.
    """
    port: int = docker_services.port_for("minio", 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return {
        "endpoint_url": api_url,
        "aws_access_key_id": S3_ACCESS_KEY,
        "aws_secret_access_key": S3_SECRET_KEY,
        "region_name": S3_REGION,
    }


@pytest_asyncio.fixture(scope="function")
async def s3_bucket(
    s3_service: Dict[str, Any], monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[str, None]:
    """
    Create a unique, isolated bucket for a single test function.

    The `S3SYNC_*` environment variables are pointed at the bucket so that
    `S3Config.from_env` picks it up. `monkeypatch` restores them afterwards,
    and the bucket is emptied and removed.

    Yields:
        str: The bucket name.
    """
    import boto3
    from aiobotocore.session import get_session
    from botocore.config import Config as BotoConfig
    from botocore.exceptions import ClientError

    bucket: str = f"s3-sync-{uuid.uuid4()}"
    point_environment_at_bucket(monkeypatch, s3_service, bucket)

    async with get_session().create_client("s3", **s3_service) as client:
        await client.create_bucket(Bucket=bucket)

    yield bucket

    # boto3 is simpler for synchronous, recursive delete
    resource = boto3.resource(
        "s3",
        **s3_service,
        config=BotoConfig(retries={"max_attempts": 0, "mode": "standard"}),
    )
    try:
        bucket_obj = resource.Bucket(bucket)
        bucket_obj.objects.all().delete()
        bucket_obj.delete()
    except ClientError as e:
        if e.response["Error"]["Code"] != "NoSuchBucket":
            raise
