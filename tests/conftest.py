"""Shared fixtures: moto-backed AWS clients and fake boto3 clients."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from site_deploy.config import DeployConfig

REGION = "eu-west-1"
BUCKET = "site-deploy-test-bucket"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials for moto; deploy settings are cleared so tests control them."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    for name in ("AWS_REGION", "AWS_BUCKET", "AWS_DISTRIBUTION_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def aws() -> Iterator[None]:
    with mock_aws():
        yield


@pytest.fixture
def s3(aws: None):
    return boto3.client("s3", region_name=REGION)


@pytest.fixture
def cloudfront(aws: None):
    return boto3.client("cloudfront", region_name="us-east-1")


@pytest.fixture
def fake_s3() -> MagicMock:
    """A MagicMock standing in for a boto3 S3 client."""
    client = MagicMock()
    client.create_bucket.return_value = {"Location": f"http://{BUCKET}.s3.amazonaws.com/"}
    client.head_bucket.return_value = {}
    client.upload_fileobj.return_value = None
    return client


@pytest.fixture
def fake_cloudfront() -> MagicMock:
    """A MagicMock standing in for a boto3 CloudFront client."""
    client = MagicMock()
    client.create_cloud_front_origin_access_identity.return_value = {
        "CloudFrontOriginAccessIdentity": {"Id": "E2OAITEST"}
    }
    client.create_distribution.return_value = {
        "Distribution": {"Id": "EDISTTEST", "DomainName": "d111111abcdef8.cloudfront.net"}
    }
    client.get_distribution.return_value = {
        "Distribution": {
            "Id": "EEXISTING",
            "DomainName": "d222222abcdef8.cloudfront.net",
            "DistributionConfig": {
                "Origins": {
                    "Items": [
                        {
                            "Id": f"S3-{BUCKET}",
                            "DomainName": f"{BUCKET}.s3.{REGION}.amazonaws.com",
                            "S3OriginConfig": {
                                "OriginAccessIdentity": "origin-access-identity/cloudfront/E2OLD"
                            },
                        }
                    ]
                }
            },
        }
    }
    client.create_invalidation.return_value = {"Invalidation": {"Id": "I2INVALIDATION"}}
    return client


@pytest.fixture
def config() -> DeployConfig:
    return DeployConfig(
        bucket_name=BUCKET,
        region=REGION,
        distribution_id="",
        name="demo",
        caller_reference="site-deploy:deploy_1700000000000",
        access_key_id="testing",
        secret_access_key="testing",
    )


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A small built site: three files, one nested, plus a .git directory."""
    (tmp_path / "assets").mkdir()
    (tmp_path / "index.html").write_text("<html><body>hello</body></html>")
    (tmp_path / "assets" / "app.js").write_text("console.log('hi');")
    (tmp_path / "data.bin").write_bytes(b"\x00\x01\x02")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/main")
    return tmp_path
