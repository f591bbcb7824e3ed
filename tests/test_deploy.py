"""Tests for the deploy orchestration and the command line entry point."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from site_deploy.cloudfront_client import MAX_INVALIDATION_PATHS, CDNClient
from site_deploy.config import DeployConfig, InvalidationPolicy, resolve
from site_deploy.deploy import Deployer, DeployStage, main, options_from_args, parse_args
from site_deploy.errors import PreconditionError, UploadError
from site_deploy.manifest import list_files
from site_deploy.s3_client import IDENTITY_ARN_PREFIX, ObjectStoreClient

from .conftest import BUCKET, REGION


def _deployer(config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock) -> Deployer:
    return Deployer(config, s3=ObjectStoreClient(fake_s3), cdn=CDNClient(fake_cloudfront))


def _recorder(fake_s3: MagicMock, fake_cloudfront: MagicMock) -> MagicMock:
    parent = MagicMock()
    parent.attach_mock(fake_s3, "s3")
    parent.attach_mock(fake_cloudfront, "cf")
    return parent


def _call_names(parent: MagicMock) -> List[str]:
    return [name for name, _, _ in parent.mock_calls]


@pytest.mark.asyncio
async def test_deploy_runs_steps_in_order(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    parent = _recorder(fake_s3, fake_cloudfront)
    deployer = _deployer(config, fake_s3, fake_cloudfront)

    report = await deployer.deploy(list_files(str(site_dir)))

    names = _call_names(parent)
    assert names.count("s3.upload_fileobj") == 3
    assert names.count("cf.create_cloud_front_origin_access_identity") == 1
    assert names.count("cf.create_distribution") == 1
    assert names.count("cf.create_invalidation") == 1

    identity_at = names.index("cf.create_cloud_front_origin_access_identity")
    distribution_at = names.index("cf.create_distribution")
    invalidation_at = names.index("cf.create_invalidation")
    last_upload_at = max(i for i, name in enumerate(names) if name == "s3.upload_fileobj")
    policy_at = names.index("s3.put_bucket_policy")
    assert names.index("s3.create_bucket") < identity_at < policy_at < distribution_at < invalidation_at
    assert last_upload_at < invalidation_at

    assert report.stage is DeployStage.DONE
    assert deployer.stage is DeployStage.DONE
    assert report.bucket is not None and report.bucket.name == BUCKET
    assert report.distribution is not None and report.distribution.id == "EDISTTEST"
    assert sorted(report.uploaded_keys) == ["assets/app.js", "data.bin", "index.html"]
    assert report.invalidation_id == "I2INVALIDATION"


@pytest.mark.asyncio
async def test_deploy_points_distribution_at_bucket(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    await _deployer(config, fake_s3, fake_cloudfront).deploy(list_files(str(site_dir)))

    distribution_config = fake_cloudfront.create_distribution.call_args.kwargs["DistributionConfig"]
    [origin] = distribution_config["Origins"]["Items"]
    assert origin["DomainName"] == f"{BUCKET}.s3.{REGION}.amazonaws.com"
    assert origin["S3OriginConfig"]["OriginAccessIdentity"].endswith("/E2OAITEST")
    batch = fake_cloudfront.create_invalidation.call_args.kwargs
    assert batch["DistributionId"] == "EDISTTEST"
    assert batch["InvalidationBatch"]["Paths"] == {"Quantity": 1, "Items": ["/index.html"]}


@pytest.mark.asyncio
async def test_deploy_grants_identity_read_on_bucket(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    await _deployer(config, fake_s3, fake_cloudfront).deploy(list_files(str(site_dir)))

    fake_s3.put_bucket_policy.assert_called_once()
    kwargs = fake_s3.put_bucket_policy.call_args.kwargs
    assert kwargs["Bucket"] == BUCKET
    [statement] = json.loads(kwargs["Policy"])["Statement"]
    assert statement["Principal"] == {"AWS": f"{IDENTITY_ARN_PREFIX}E2OAITEST"}
    assert statement["Action"] == "s3:GetObject"


@pytest.mark.asyncio
async def test_deploy_empty_bucket_fails_without_network(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    deployer = _deployer(dataclasses.replace(config, bucket_name=""), fake_s3, fake_cloudfront)

    with pytest.raises(PreconditionError):
        await deployer.deploy(list_files(str(site_dir)))

    assert fake_s3.mock_calls == []
    assert fake_cloudfront.mock_calls == []
    assert deployer.stage is DeployStage.ERROR


@pytest.mark.asyncio
async def test_deploy_zero_concurrency_fails_before_any_request(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    deployer = _deployer(dataclasses.replace(config, max_concurrency=0), fake_s3, fake_cloudfront)

    with pytest.raises(PreconditionError):
        await deployer.deploy(list_files(str(site_dir)))

    assert fake_s3.mock_calls == []
    assert fake_cloudfront.mock_calls == []
    assert deployer.stage is DeployStage.ERROR


@pytest.mark.asyncio
async def test_deploy_uses_configured_distribution(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    deployer = _deployer(dataclasses.replace(config, distribution_id="EEXISTING"), fake_s3, fake_cloudfront)

    report = await deployer.deploy(list_files(str(site_dir)))

    fake_cloudfront.create_cloud_front_origin_access_identity.assert_not_called()
    fake_cloudfront.create_distribution.assert_not_called()
    fake_cloudfront.get_distribution.assert_called_once_with(Id="EEXISTING")
    fake_s3.put_bucket_policy.assert_not_called()
    assert fake_cloudfront.create_invalidation.call_args.kwargs["DistributionId"] == "EEXISTING"
    assert report.distribution is not None
    assert report.distribution.origin_access_identity_id == "E2OLD"


@pytest.mark.asyncio
async def test_deploy_manifest_invalidation_policy(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    config = dataclasses.replace(config, invalidation_policy=InvalidationPolicy.MANIFEST)

    await _deployer(config, fake_s3, fake_cloudfront).deploy(list_files(str(site_dir)))

    paths = fake_cloudfront.create_invalidation.call_args.kwargs["InvalidationBatch"]["Paths"]
    assert paths["Quantity"] == 3
    assert sorted(paths["Items"]) == ["/assets/app.js", "/data.bin", "/index.html"]


@pytest.mark.asyncio
async def test_deploy_large_manifest_invalidates_wildcard(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, tmp_path: Path
) -> None:
    for i in range(MAX_INVALIDATION_PATHS + 1):
        (tmp_path / f"page{i}.html").write_text("")
    config = dataclasses.replace(config, invalidation_policy=InvalidationPolicy.MANIFEST)

    await _deployer(config, fake_s3, fake_cloudfront).deploy(list_files(str(tmp_path)))

    paths = fake_cloudfront.create_invalidation.call_args.kwargs["InvalidationBatch"]["Paths"]
    assert paths == {"Quantity": 1, "Items": ["/*"]}


@pytest.mark.asyncio
async def test_deploy_empty_site_skips_invalidation(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, tmp_path: Path
) -> None:
    deployer = _deployer(config, fake_s3, fake_cloudfront)

    report = await deployer.deploy(list_files(str(tmp_path)))

    fake_s3.upload_fileobj.assert_not_called()
    fake_cloudfront.create_invalidation.assert_not_called()
    assert report.uploaded_keys == []
    assert report.invalidation_id == ""
    assert report.stage is DeployStage.DONE


@pytest.mark.asyncio
async def test_deploy_stops_when_bucket_is_missing(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    fake_s3.head_bucket.side_effect = ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")
    deployer = _deployer(config, fake_s3, fake_cloudfront)

    with pytest.raises(PreconditionError):
        await deployer.deploy(list_files(str(site_dir)))

    fake_s3.upload_fileobj.assert_not_called()
    fake_cloudfront.create_invalidation.assert_not_called()
    assert deployer.stage is DeployStage.ERROR


@pytest.mark.asyncio
async def test_deploy_upload_failure_skips_invalidation(
    config: DeployConfig,
    fake_s3: MagicMock,
    fake_cloudfront: MagicMock,
    site_dir: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    fake_s3.upload_fileobj.side_effect = ClientError(
        {"Error": {"Code": "InternalError", "Message": "boom"}}, "PutObject"
    )
    deployer = _deployer(config, fake_s3, fake_cloudfront)

    with pytest.raises(UploadError) as excinfo:
        await deployer.deploy(list_files(str(site_dir)))

    assert len(excinfo.value.failures) == 3
    fake_cloudfront.create_invalidation.assert_not_called()
    assert deployer.stage is DeployStage.ERROR
    assert "deploy Result: ❌ Failed Running deployment" in caplog.text


def test_deploy_logs_to_injected_logger(
    config: DeployConfig, fake_s3: MagicMock, fake_cloudfront: MagicMock, site_dir: Path
) -> None:
    log = MagicMock()
    deployer = Deployer(
        config,
        s3=ObjectStoreClient(fake_s3, log),
        cdn=CDNClient(fake_cloudfront, log),
        log=log,
    )

    deployer.run(list_files(str(site_dir)))

    lines = [c.args[0] for c in log.info.call_args_list]
    assert "deploy Result: ✅ Started deployment" in lines
    assert "ensure_bucket Result: ✅ Finished bucket" in lines
    assert "invalidate Result: ✅ Finished invalidation" in lines
    assert "deploy Result: ✅ Finished deployment" in lines
    log.error.assert_not_called()


def test_run_sets_up_console_logging_without_injected_logger(
    config: DeployConfig,
    fake_s3: MagicMock,
    fake_cloudfront: MagicMock,
    site_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    ensure_console_logging = MagicMock()
    monkeypatch.setattr("site_deploy.deploy.ensure_console_logging", ensure_console_logging)

    _deployer(config, fake_s3, fake_cloudfront).run(list_files(str(site_dir)))
    ensure_console_logging.assert_called_once_with()

    ensure_console_logging.reset_mock()
    Deployer(config, s3=ObjectStoreClient(fake_s3), cdn=CDNClient(fake_cloudfront), log=MagicMock()).run(
        list_files(str(site_dir))
    )
    ensure_console_logging.assert_not_called()


def test_run_against_moto(aws: None, config: DeployConfig, site_dir: Path) -> None:
    report = Deployer(config).run(list_files(str(site_dir)))

    s3 = boto3.client("s3", region_name=REGION)
    keys = sorted(obj["Key"] for obj in s3.list_objects_v2(Bucket=BUCKET)["Contents"])
    assert keys == ["assets/app.js", "data.bin", "index.html"]
    assert s3.head_object(Bucket=BUCKET, Key="index.html")["ContentType"] == "text/html"

    cloudfront = boto3.client("cloudfront", region_name="us-east-1")
    assert report.distribution is not None
    distribution = cloudfront.get_distribution(Id=report.distribution.id)["Distribution"]
    assert distribution["DomainName"] == report.distribution.domain_name
    assert report.invalidation_id
    assert report.stage is DeployStage.DONE


# --- command line ---


def test_parse_args_defaults() -> None:
    args = parse_args(["--source-dir", "dist"])
    options = options_from_args(args)
    assert args.source_dir == "dist"
    assert options.bucket is None
    assert options.invalidation_policy is InvalidationPolicy.FIXED
    assert options.invalidation_paths == ("/index.html",)


def test_parse_args_invalidation_paths() -> None:
    args = parse_args(
        ["--source-dir", "dist", "--invalidate-path", "/index.html", "--invalidate-path", "/404.html"]
    )
    assert options_from_args(args).invalidation_paths == ("/index.html", "/404.html")


@pytest.mark.parametrize("value", ["0", "-2"])
def test_parse_args_rejects_non_positive_concurrency(value: str) -> None:
    with pytest.raises(SystemExit):
        parse_args(["--source-dir", "dist", "--max-concurrency", value])


def test_parse_args_max_concurrency() -> None:
    assert parse_args(["--source-dir", "dist", "--max-concurrency", "3"]).max_concurrency == 3


def test_main_deploys_to_moto(aws: None, site_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = main(["--source-dir", str(site_dir), "--bucket", BUCKET, "--region", REGION])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "DEPLOYMENT SUMMARY" in out
    assert f"S3 Bucket Name:        {BUCKET}" in out
    assert "Files Uploaded:        3" in out


def test_main_without_bucket_exits_with_error(site_dir: Path) -> None:
    assert main(["--source-dir", str(site_dir)]) == 1


def test_bucket_from_project_name_on_command_line() -> None:
    args = parse_args(["--source-dir", "dist", "--name", "Demo Site"])
    assert resolve(options_from_args(args), environ={}).bucket_name == "site-deploy-demo-site"


def test_main_bucket_from_environment(
    aws: None, site_dir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("AWS_BUCKET", BUCKET)
    monkeypatch.setenv("AWS_REGION", REGION)

    assert main(["--source-dir", str(site_dir), "--bucket", "ignored-bucket"]) == 0
    assert f"S3 Bucket Name:        {BUCKET}" in capsys.readouterr().out
