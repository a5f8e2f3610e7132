# tests/unit/test_config.py
"""Unit tests for configuration loading and validation."""

import os
from pathlib import Path
from typing import Dict
from unittest.mock import patch

import pytest
from conftest import point_environment_at_bucket

from s3_sync.config import AppConfig, Config, S3Config, normalize_prefix
from s3_sync.exceptions import ConfigError
from s3_sync.policy import HeaderPolicy, HeaderPolicyTable

ENV: Dict[str, str] = {
    "S3SYNC_BUCKET": "site-bucket",
    "S3SYNC_ACCESS_KEY_ID": "key",
    "S3SYNC_SECRET_ACCESS_KEY": "secret",
}


def test_config_loads_store_from_environment() -> None:
    """
    Tests that `Config` reads the store settings from `S3SYNC_*` variables.

    Assert:
        - Required values are taken from the environment and the region
          falls back to `us-east-1`.
    """
    with patch.dict(os.environ, {**ENV, "S3SYNC_PREFIX": "/site/v2/"}, clear=True):
        config: Config = Config()

    assert config.store.bucket == "site-bucket"
    assert config.store.region == "us-east-1"
    assert config.store.endpoint_url is None
    assert config.store.prefix == "site/v2/"


@pytest.mark.parametrize("missing", sorted(ENV))
def test_config_missing_required_variable(missing: str) -> None:
    env: Dict[str, str] = {k: v for k, v in ENV.items() if k != missing}
    with patch.dict(os.environ, env, clear=True):
        with pytest.raises(ConfigError, match=missing):
            Config()


def test_s3_config_rejects_empty_credentials() -> None:
    with pytest.raises(ConfigError, match="secret_access_key"):
        S3Config(bucket="b", access_key_id="k", secret_access_key="")


def test_as_boto_dict_omits_default_endpoint() -> None:
    config: S3Config = S3Config(bucket="b", access_key_id="k", secret_access_key="s")

    assert config.as_boto_dict() == {
        "aws_access_key_id": "k",
        "aws_secret_access_key": "s",
        "region_name": "us-east-1",
    }


def test_as_boto_dict_includes_custom_endpoint() -> None:
    config: S3Config = S3Config(
        bucket="b",
        access_key_id="k",
        secret_access_key="s",
        endpoint_url="http://localhost:9000",
    )

    assert config.as_boto_dict()["endpoint_url"] == "http://localhost:9000"


@pytest.mark.parametrize(
    "raw, expected",
    [(None, ""), ("", ""), ("/", ""), ("site", "site/"), ("/a/b/", "a/b/")],
)
def test_normalize_prefix(raw: str, expected: str) -> None:
    assert normalize_prefix(raw) == expected


def test_app_config_defaults_are_bounded() -> None:
    app: AppConfig = AppConfig(
        build_dir="out", exclude=["*.map"]  # type: ignore[arg-type]
    )

    assert app.build_dir == Path("out")
    assert app.exclude == ("*.map",)
    assert app.acl == "public-read"
    assert 1 <= app.transfer_concurrency <= 16
    assert 1 <= app.checksum_concurrency <= 16
    assert 1 <= app.mtime_concurrency <= 16


@pytest.mark.parametrize(
    "field_name",
    ["mtime_concurrency", "checksum_concurrency", "transfer_concurrency"],
)
def test_app_config_rejects_unbounded_concurrency(field_name: str) -> None:
    with pytest.raises(ConfigError, match=field_name):
        AppConfig(**{field_name: 0})


def test_app_config_is_hashable_with_policies() -> None:
    """
    Tests that a frozen `AppConfig` stays hashable despite its policy table.

    Assert:
        - Hashing does not raise, equal settings hash alike, and the tables
          still take part in equality.
    """
    table: HeaderPolicyTable = HeaderPolicyTable()
    table.register("text/css", HeaderPolicy(max_age=60))

    first: AppConfig = AppConfig(policies=table)
    second: AppConfig = AppConfig()

    assert hash(first) == hash(second)
    assert first != second
    assert {first: "ok"}[first] == "ok"


def test_bucket_environment_is_restored_after_use() -> None:
    """
    Tests that pointing the environment at a test bucket is undone.

    Arrange:
        - Start from an environment with an unrelated bucket and no endpoint.
    Act:
        - Point the variables at a MinIO bucket inside a `MonkeyPatch`
          context, then leave the context.
    Assert:
        - Inside, `Config` reads the MinIO bucket; afterwards the original
          values are back and the endpoint is gone again.
    """
    service: Dict[str, str] = {
        "endpoint_url": "http://127.0.0.1:9000",
        "aws_access_key_id": "minio-key",
        "aws_secret_access_key": "minio-secret",
        "region_name": "us-east-1",
    }
    with patch.dict(os.environ, ENV, clear=True):
        with pytest.MonkeyPatch.context() as monkeypatch:
            point_environment_at_bucket(monkeypatch, service, "s3-sync-e2e")
            assert Config().store.bucket == "s3-sync-e2e"

        assert os.environ["S3SYNC_BUCKET"] == "site-bucket"
        assert "S3SYNC_ENDPOINT_URL" not in os.environ
