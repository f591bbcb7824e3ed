"""
==============================================================
 S3 bucket creation and file upload
==============================================================

The object-store half of a deploy: make sure the bucket is there, then copy the
built files into it. Every method logs a result line and, on failure, raises a
`DeployError` subclass.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .config import DEFAULT_MAX_CONCURRENCY, DEFAULT_REGION, DeployConfig
from .errors import BOTO_ERRORS, LocalFileError, PreconditionError, ProviderError, UploadError
from .manifest import UploadTask
from .reporting import log_result
from .session import make_client

logger = logging.getLogger(__name__)

# Error codes meaning the bucket is already ours.
OWNED_BUCKET_CODES: Tuple[str, ...] = ("BucketAlreadyOwnedByYou",)
# Error codes head_bucket returns for a bucket that does not exist.
MISSING_BUCKET_CODES: Tuple[str, ...] = ("404", "NoSuchBucket", "NotFound")
# IAM principal of a CloudFront Origin Access Identity, minus the id.
IDENTITY_ARN_PREFIX: str = "arn:aws:iam::cloudfront:user/CloudFront Origin Access Identity "


@dataclass(frozen=True)
class BucketLocation:
    """Where a bucket lives and the endpoints CloudFront can use as origin."""

    name: str
    region: str

    @property
    def rest_domain(self) -> str:
        return f"{self.name}.s3.{self.region}.amazonaws.com"

    @property
    def website_domain(self) -> str:
        return f"{self.name}.s3-website-{self.region}.amazonaws.com"


class ObjectStoreClient:
    """Thin wrapper around a boto3 S3 client."""

    def __init__(self, s3_client: Any, log: Optional[logging.Logger] = None) -> None:
        self._s3 = s3_client
        self._log: logging.Logger = log or logger

    @classmethod
    def from_config(cls, config: DeployConfig, log: Optional[logging.Logger] = None) -> "ObjectStoreClient":
        return cls(make_client("s3", config), log)

    @property
    def region(self) -> str:
        """Region the underlying boto3 client is bound to, or an empty string."""
        region_name = getattr(getattr(self._s3, "meta", None), "region_name", None)
        return region_name if isinstance(region_name, str) else ""

    def ensure_bucket(self, name: str, region: str = "") -> BucketLocation:
        """
        Creates the S3 bucket, or accepts it if we already own it.

        Simple Explanation:
        This asks AWS for a new online folder (bucket) called `name` in `region`.
        If you already created a bucket with this name earlier, AWS says so and
        we simply carry on with it, so calling this twice gives the same answer.
        If *someone else* owns the name, or anything else goes wrong, the deploy
        stops here with a ProviderError.

        Args:
            name (str): Bucket name. Must be globally unique.
            region (str): AWS region code. Empty means the client's region, or
                us-east-1 when the client has none. Must match the client's region.

        Returns:
            BucketLocation: The bucket's name and region.

        Raises:
            PreconditionError: If `name` is empty or `region` differs from the
                client's region. No request is sent.
            ProviderError: If AWS rejects the request.
        """
        operation: str = "ensure_bucket"
        region = region or self.region or DEFAULT_REGION
        if not name:
            error = PreconditionError("Bucket name is required", operation)
            log_result(operation, "Creating", "bucket", error, self._log)
            raise error
        # A bucket can only be created through its own regional endpoint
        if self.region and region != self.region:
            error = PreconditionError(
                f"Bucket region {region} does not match client region {self.region}", operation
            )
            log_result(operation, "Creating", "bucket", error, self._log)
            raise error

        log_result(operation, "Creating", "bucket", log=self._log)
        try:
            # us-east-1 rejects an explicit LocationConstraint
            if region == DEFAULT_REGION:
                self._s3.create_bucket(Bucket=name)
            else:
                self._s3.create_bucket(
                    Bucket=name,
                    CreateBucketConfiguration={"LocationConstraint": region},
                )
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            if wrapped.code not in OWNED_BUCKET_CODES:
                log_result(operation, "Creating", "bucket", wrapped, self._log)
                raise wrapped from e
            self._log.info(f"Bucket '{name}' already exists and is owned by you. Proceeding.")

        log_result(operation, "Finished", "bucket", log=self._log)
        return BucketLocation(name=name, region=region)

    def bucket_exists(self, name: str) -> bool:
        """
        Checks that the bucket exists and is reachable (HEAD bucket).

        Returns False only when AWS reports the bucket as missing; any other
        error (access denied, network) is raised as ProviderError.
        """
        operation: str = "bucket_exists"
        if not name:
            error = PreconditionError("Bucket name is required", operation)
            log_result(operation, "Checking", "bucket", error, self._log)
            raise error

        try:
            self._s3.head_bucket(Bucket=name)
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            if wrapped.code in MISSING_BUCKET_CODES:
                self._log.warning(f"Bucket '{name}' does not exist.")
                return False
            log_result(operation, "Checking", "bucket", wrapped, self._log)
            raise wrapped from e

        log_result(operation, "Finished", "bucket", log=self._log)
        return True

    def grant_origin_read(self, bucket: str, identity_id: str) -> None:
        """
        Applies a bucket policy letting the CloudFront identity read every object.

        Simple Explanation:
        The bucket stays private. This sets the rule (the 'policy') that says:
        "Only CloudFront, acting as this Origin Access Identity, may *read*
        ('s3:GetObject') any file in this bucket." Without it CloudFront gets
        AccessDenied for every page. The policy replaces any existing one.

        Args:
            bucket (str): The bucket CloudFront reads from.
            identity_id (str): The Origin Access Identity id.

        Raises:
            PreconditionError: If the bucket or identity is missing. No request is sent.
            ProviderError: If AWS rejects the policy.
        """
        operation: str = "grant_origin_read"
        if not bucket or not identity_id:
            error = PreconditionError("Bucket name and identity id are required", operation)
            log_result(operation, "Creating", "policy", error, self._log)
            raise error

        bucket_policy = {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "AllowCloudFrontOriginAccessIdentity",
                    "Effect": "Allow",
                    "Principal": {"AWS": f"{IDENTITY_ARN_PREFIX}{identity_id}"},
                    "Action": "s3:GetObject",
                    "Resource": f"arn:aws:s3:::{bucket}/*",
                }
            ],
        }

        log_result(operation, "Creating", "policy", log=self._log)
        try:
            self._s3.put_bucket_policy(Bucket=bucket, Policy=json.dumps(bucket_policy))
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Creating", "policy", wrapped, self._log)
            raise wrapped from e

        log_result(operation, "Finished", "policy", log=self._log)

    def upload_object(self, bucket: str, task: UploadTask) -> None:
        """
        Streams one local file into the bucket under `task.remote_key`.

        ContentType is only sent when the extension maps to a known type, so
        browsers render `index.html` as HTML while unknown files get S3's default.

        Raises:
            LocalFileError: If the local file cannot be opened or read.
            ProviderError: If AWS rejects the upload.
        """
        operation: str = "upload_object"
        extra_args = {"ContentType": task.content_type} if task.content_type else {}

        try:
            with open(task.local_path, "rb") as body:
                self._s3.upload_fileobj(body, bucket, task.remote_key, ExtraArgs=extra_args)
        except OSError as e:
            error = LocalFileError(f"Cannot read {task.local_path}: {e}", operation, task.local_path)
            log_result(operation, "Uploading", f"file {task.remote_key}", error, self._log)
            raise error from e
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Uploading", f"file {task.remote_key}", wrapped, self._log)
            raise wrapped from e

        log_result(operation, "Finished", f"file {task.remote_key}", log=self._log)

    async def upload_all(
        self,
        bucket: str,
        tasks: Sequence[UploadTask],
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ) -> List[str]:
        """
        Uploads every task, at most `max_concurrency` at a time.

        Each upload runs in a worker thread so the event loop stays free. All
        uploads are allowed to finish; if any failed, a single UploadError lists
        every failed key.

        Args:
            bucket (str): Target bucket name.
            tasks (Sequence[UploadTask]): One entry per file.
            max_concurrency (int): Upper bound on uploads in flight.

        Returns:
            List[str]: The uploaded keys, in task order.

        Raises:
            PreconditionError: If `max_concurrency` is below 1.
            UploadError: If one or more uploads failed.
        """
        if max_concurrency < 1:
            error = PreconditionError("max_concurrency must be at least 1", "upload_all")
            log_result("upload_all", "Uploading", "files", error, self._log)
            raise error

        semaphore = asyncio.Semaphore(max_concurrency)

        async def _upload(task: UploadTask) -> str:
            async with semaphore:
                await asyncio.to_thread(self.upload_object, bucket, task)
            return task.remote_key

        self._log.info(f"Uploading {len(tasks)} files to bucket '{bucket}' ({max_concurrency} at a time)")
        results = await asyncio.gather(*(_upload(task) for task in tasks), return_exceptions=True)

        failures: List[Tuple[str, BaseException]] = []
        uploaded: List[str] = []
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                failures.append((task.remote_key, result))
            else:
                uploaded.append(result)

        self._log.info(f"Uploaded {len(uploaded)} files, {len(failures)} failed.")
        if failures:
            error = UploadError(failures)
            log_result("upload_all", "Uploading", "files", error, self._log)
            raise error

        log_result("upload_all", "Finished", "files", log=self._log)
        return uploaded
