"""
==============================================================
 AWS S3 Static Website & CloudFront Deployment
==============================================================

Project Explanation:
--------------------
A build step produces a folder of HTML, CSS and JavaScript files. This module
puts that folder online:

1. Makes sure the S3 bucket (the online folder) exists.
2. Makes sure a CloudFront distribution (the worldwide delivery network) sits
   in front of it. A fresh distribution gets its own Origin Access Identity so
   it can read the bucket; an already configured distribution is looked up.
3. Uploads every built file, a handful at a time.
4. Tells CloudFront to drop its cached copies so visitors see the new files.

Each step is logged as a `Result:` line. The first failing step stops the
deploy and raises a `DeployError`.

Usage:
    site-deploy --source-dir dist --bucket my-site-bucket --region eu-west-1
"""

import argparse
import asyncio
import enum
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .cloudfront_client import CDNClient, CacheBehaviorSettings, DistributionDescriptor, build_invalidation_paths
from .config import DEFAULT_MAX_CONCURRENCY, DeployConfig, DeployOptions, InvalidationPolicy, resolve
from .errors import DeployError, PreconditionError
from .manifest import FileManifest, build_upload_tasks, list_files
from .reporting import ensure_console_logging, log_result
from .s3_client import BucketLocation, ObjectStoreClient

logger = logging.getLogger(__name__)


class DeployStage(str, enum.Enum):
    INIT = "init"
    BUCKET_ENSURED = "bucket_ensured"
    DISTRIBUTION_ENSURED = "distribution_ensured"
    FILES_UPLOADED = "files_uploaded"
    INVALIDATED = "invalidated"
    DONE = "done"
    ERROR = "error"


@dataclass
class DeployReport:
    """What a successful deploy produced."""

    bucket: Optional[BucketLocation] = None
    distribution: Optional[DistributionDescriptor] = None
    uploaded_keys: List[str] = field(default_factory=list)
    invalidation_id: str = ""
    stage: DeployStage = DeployStage.INIT


class Deployer:
    """
    Runs the deploy steps in order: bucket, distribution, upload, invalidation.

    Clients are built from `config` unless given, which is how tests inject
    fakes. `log` receives every result line; the module logger is used when
    it is omitted.
    """

    def __init__(
        self,
        config: DeployConfig,
        s3: Optional[ObjectStoreClient] = None,
        cdn: Optional[CDNClient] = None,
        log: Optional[logging.Logger] = None,
        cache_behavior: Optional[CacheBehaviorSettings] = None,
    ) -> None:
        self.config: DeployConfig = config
        self._log: logging.Logger = log or logger
        self._s3: Optional[ObjectStoreClient] = s3
        self._cdn: Optional[CDNClient] = cdn
        self._cache_behavior: Optional[CacheBehaviorSettings] = cache_behavior
        self.stage: DeployStage = DeployStage.INIT

    @property
    def s3(self) -> ObjectStoreClient:
        if self._s3 is None:
            self._s3 = ObjectStoreClient.from_config(self.config, self._log)
        return self._s3

    @property
    def cdn(self) -> CDNClient:
        if self._cdn is None:
            self._cdn = CDNClient.from_config(self.config, self._log)
        return self._cdn

    def ensure_bucket(self) -> BucketLocation:
        location: BucketLocation = self.s3.ensure_bucket(self.config.bucket_name, self.config.effective_region)
        self.stage = DeployStage.BUCKET_ENSURED
        return location

    def ensure_distribution(self, bucket: BucketLocation) -> DistributionDescriptor:
        """
        Returns the distribution to invalidate after upload.

        With a configured distribution id the existing distribution is looked
        up. Otherwise an Origin Access Identity is created first and granted
        read access to the bucket, then a new distribution is created using it,
        with the bucket's REST endpoint as origin.
        """
        if self.config.distribution_id:
            distribution = self.cdn.get_distribution(self.config.distribution_id)
        else:
            identity_id: str = self.cdn.ensure_origin_access_identity(
                self.config.comment, self.config.caller_reference
            )
            self.s3.grant_origin_read(bucket.name, identity_id)
            distribution = self.cdn.create_distribution(
                bucket_domain=bucket.rest_domain,
                bucket_id=f"S3-{bucket.name}",
                identity_id=identity_id,
                comment=self.config.comment,
                caller_reference=self.config.caller_reference,
                cache_behavior=self._cache_behavior,
            )
        self.stage = DeployStage.DISTRIBUTION_ENSURED
        return distribution

    async def upload(self, manifest: FileManifest) -> List[str]:
        """Uploads the manifest into the configured bucket."""
        bucket_name: str = self.config.bucket_name
        if not bucket_name:
            error = PreconditionError("Bucket param required for deployment", "upload")
            log_result("upload", "Uploading", "file", error, self._log)
            raise error
        # head_bucket is blocking; keep it off the event loop like the uploads
        if not await asyncio.to_thread(self.s3.bucket_exists, bucket_name):
            error = PreconditionError(f"Bucket '{bucket_name}' does not exist", "upload")
            log_result("upload", "Uploading", "file", error, self._log)
            raise error

        tasks = build_upload_tasks(manifest)
        uploaded: List[str] = await self.s3.upload_all(bucket_name, tasks, self.config.max_concurrency)
        self.stage = DeployStage.FILES_UPLOADED
        return uploaded

    def invalidate(self, distribution_id: str, uploaded_keys: Sequence[str]) -> str:
        """Invalidates the configured paths; returns an empty id when nothing was uploaded."""
        paths: List[str] = build_invalidation_paths(
            self.config.invalidation_policy, uploaded_keys, self.config.invalidation_paths
        ) if uploaded_keys else []
        if not paths:
            self._log.info("No paths to invalidate, skipping invalidation.")
            self.stage = DeployStage.INVALIDATED
            return ""
        invalidation_id: str = self.cdn.invalidate(distribution_id, paths, self.config.caller_reference)
        self.stage = DeployStage.INVALIDATED
        return invalidation_id

    async def deploy(self, manifest: FileManifest) -> DeployReport:
        """
        Deploys `manifest` end to end.

        Simple Explanation:
        This is the conductor. It runs the steps in order and stops at the first
        one that fails:
        1. Bucket (`ensure_bucket`).
        2. Distribution, identity first (`ensure_distribution`).
        3. Upload every file (`upload`).
        4. Invalidate the CDN cache once all uploads are done (`invalidate`).
        Nothing is retried.

        Returns:
            DeployReport: Bucket, distribution, uploaded keys and invalidation id.

        Raises:
            DeployError: From whichever step failed; `self.stage` is then ERROR.
        """
        report = DeployReport()
        log_result("deploy", "Started", "deployment", log=self._log)
        try:
            if not self.config.bucket_name:
                raise PreconditionError("Bucket param required for deployment", "deploy")
            if self.config.max_concurrency < 1:
                raise PreconditionError("max_concurrency must be at least 1", "deploy")

            report.bucket = self.ensure_bucket()
            report.distribution = self.ensure_distribution(report.bucket)
            report.uploaded_keys = await self.upload(manifest)
            report.invalidation_id = self.invalidate(report.distribution.id, report.uploaded_keys)
        except DeployError as e:
            self.stage = DeployStage.ERROR
            report.stage = self.stage
            log_result("deploy", "Running", "deployment", e, self._log)
            raise

        self.stage = DeployStage.DONE
        report.stage = self.stage
        log_result("deploy", "Finished", "deployment", log=self._log)
        return report

    def run(self, manifest: FileManifest) -> DeployReport:
        """
        Synchronous entry point around `deploy`.

        Without an injected logger, result lines go to the console unless
        logging was already configured.
        """
        if self._log is logger:
            ensure_console_logging()
        return asyncio.run(self.deploy(manifest))


# --- Command line ---

def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deploy a built static site to S3 and CloudFront.")
    parser.add_argument("--source-dir", required=True, help="Build output directory to upload")
    parser.add_argument("--bucket", help="Bucket name (AWS_BUCKET takes precedence)")
    parser.add_argument("--region", help="AWS region (AWS_REGION takes precedence)")
    parser.add_argument("--distribution-id", help="Existing distribution (AWS_DISTRIBUTION_ID takes precedence)")
    parser.add_argument("--name", help="Project name, used in resource comments")
    parser.add_argument(
        "--invalidation-policy",
        choices=[policy.value for policy in InvalidationPolicy],
        default=InvalidationPolicy.FIXED.value,
    )
    parser.add_argument(
        "--invalidate-path",
        action="append",
        dest="invalidate_paths",
        help="Path for the fixed invalidation policy; repeatable (default: /index.html)",
    )
    parser.add_argument("--max-concurrency", type=positive_int, default=DEFAULT_MAX_CONCURRENCY)
    return parser.parse_args(argv)


def options_from_args(args: argparse.Namespace) -> DeployOptions:
    options = DeployOptions(
        bucket=args.bucket,
        region=args.region,
        distribution_id=args.distribution_id,
        name=args.name,
        invalidation_policy=InvalidationPolicy(args.invalidation_policy),
        max_concurrency=args.max_concurrency,
    )
    if args.invalidate_paths:
        options.invalidation_paths = tuple(args.invalidate_paths)
    return options


def print_summary(report: DeployReport) -> None:
    print("\n" + "=" * 60)
    print("          DEPLOYMENT SUMMARY")
    print("=" * 60)
    if report.bucket:
        print(f" S3 Bucket Name:        {report.bucket.name}")
        print(f" AWS Region:            {report.bucket.region}")
    print(f" Files Uploaded:        {len(report.uploaded_keys)}")
    print("-" * 60)
    if report.distribution:
        print(f" CloudFront ID:         {report.distribution.id}")
        print(f" CloudFront Domain:     https://{report.distribution.domain_name}")
    print(f" Invalidation ID:       {report.invalidation_id}")
    print("=" * 60 + "\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ensure_console_logging()

    args = parse_args(argv)
    config: DeployConfig = resolve(options_from_args(args))
    manifest: FileManifest = list_files(args.source_dir)
    logger.info(f"Found {len(manifest)} files to upload in '{manifest.base_dir}'.")

    try:
        report: DeployReport = Deployer(config).run(manifest)
    except DeployError as e:
        logger.error(f"Deployment failed: {e}")
        return 1

    print_summary(report)
    logger.info("Deployment finished.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("\nDeployment interrupted by user.")
        sys.exit(1)
