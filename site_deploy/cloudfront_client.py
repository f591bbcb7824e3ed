"""
==============================================================
 CloudFront identity, distribution and cache invalidation
==============================================================

Simple Explanation:
CloudFront keeps copies of the website in data centers around the world. Before
it can read a private S3 bucket it needs its own "user" (an Origin Access
Identity). Then a "distribution" is created that points at the bucket. After new
files are uploaded we tell CloudFront to forget ("invalidate") its old copies of
the paths that changed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

from .config import DEFAULT_INVALIDATION_PATHS, DeployConfig, InvalidationPolicy
from .errors import BOTO_ERRORS, PreconditionError, ProviderError
from .reporting import log_result
from .session import make_client

logger = logging.getLogger(__name__)

VIEWER_PROTOCOL_POLICIES: Tuple[str, ...] = ("allow-all", "https-only", "redirect-to-https")
IDENTITY_PATH_PREFIX: str = "origin-access-identity/cloudfront/"
WILDCARD_PATH: str = "/*"
# Paths CloudFront accepts in one invalidation batch.
MAX_INVALIDATION_PATHS: int = 3000


@dataclass(frozen=True)
class DistributionDescriptor:
    id: str
    origin_access_identity_id: str
    domain_name: str


@dataclass(frozen=True)
class CacheBehaviorSettings:
    """Default cache behavior for a new distribution."""

    viewer_protocol_policy: str = "redirect-to-https"
    allowed_methods: Tuple[str, ...] = ("GET", "HEAD")
    cached_methods: Tuple[str, ...] = ("GET", "HEAD")
    compress: bool = True
    min_ttl: int = 0
    default_ttl: int = 86400  # 1 day
    max_ttl: int = 31536000  # 1 year
    default_root_object: str = "index.html"

    def __post_init__(self) -> None:
        if self.viewer_protocol_policy not in VIEWER_PROTOCOL_POLICIES:
            raise ValueError(
                f"viewer_protocol_policy must be one of {', '.join(VIEWER_PROTOCOL_POLICIES)}, "
                f"got {self.viewer_protocol_policy!r}"
            )
        if not set(self.cached_methods) <= set(self.allowed_methods):
            raise ValueError("cached_methods must be a subset of allowed_methods")
        if not 0 <= self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ValueError("TTLs must satisfy 0 <= min_ttl <= default_ttl <= max_ttl")

    def to_request(self, target_origin_id: str) -> Dict[str, Any]:
        """Renders the DefaultCacheBehavior block of a DistributionConfig."""
        if not target_origin_id:
            raise ValueError("target_origin_id is required")
        return {
            "TargetOriginId": target_origin_id,
            "ViewerProtocolPolicy": self.viewer_protocol_policy,
            "AllowedMethods": {
                "Quantity": len(self.allowed_methods),
                "Items": list(self.allowed_methods),
                "CachedMethods": {
                    "Quantity": len(self.cached_methods),
                    "Items": list(self.cached_methods),
                },
            },
            "Compress": self.compress,
            "MinTTL": self.min_ttl,
            "DefaultTTL": self.default_ttl,
            "MaxTTL": self.max_ttl,
            "ForwardedValues": {
                "QueryString": False,
                "Cookies": {"Forward": "none"},
                "Headers": {"Quantity": 0},
                "QueryStringCacheKeys": {"Quantity": 0},
            },
            "TrustedSigners": {"Enabled": False, "Quantity": 0},
            "SmoothStreaming": False,
        }


def build_invalidation_paths(
    policy: InvalidationPolicy,
    uploaded_keys: Iterable[str] = (),
    fixed_paths: Sequence[str] = DEFAULT_INVALIDATION_PATHS,
) -> List[str]:
    """
    Picks the paths to invalidate after an upload.

    - FIXED: `fixed_paths` as given (`/index.html` unless configured otherwise).
    - MANIFEST: one URL-quoted path per uploaded key, or `/*` when there are
      more keys than one batch can hold.
    - WILDCARD: `/*`.
    """
    policy = InvalidationPolicy(policy)
    if policy is InvalidationPolicy.WILDCARD:
        return [WILDCARD_PATH]
    if policy is InvalidationPolicy.MANIFEST:
        paths = ["/" + quote(key.lstrip("/"), safe="/~-_.") for key in uploaded_keys]
        if len(paths) > MAX_INVALIDATION_PATHS:
            logger.info(f"{len(paths)} paths exceed one invalidation batch, invalidating {WILDCARD_PATH} instead.")
            return [WILDCARD_PATH]
        return paths
    return list(fixed_paths)


class CDNClient:
    """Thin wrapper around a boto3 CloudFront client."""

    def __init__(self, cloudfront_client: Any, log: Optional[logging.Logger] = None) -> None:
        self._cf = cloudfront_client
        self._log: logging.Logger = log or logger

    @classmethod
    def from_config(cls, config: DeployConfig, log: Optional[logging.Logger] = None) -> "CDNClient":
        return cls(make_client("cloudfront", config), log)

    def ensure_origin_access_identity(self, comment: str, caller_reference: str) -> str:
        """
        Creates a new Origin Access Identity and returns its id.

        A new identity is created on every call; existing ones are not looked up.

        Raises:
            ProviderError: If AWS rejects the request.
        """
        operation: str = "ensure_origin_access_identity"
        log_result(operation, "Creating", "identity", log=self._log)
        try:
            response = self._cf.create_cloud_front_origin_access_identity(
                CloudFrontOriginAccessIdentityConfig={
                    "CallerReference": caller_reference,
                    "Comment": comment,
                }
            )
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Creating", "identity", wrapped, self._log)
            raise wrapped from e

        identity_id: str = response["CloudFrontOriginAccessIdentity"]["Id"]
        log_result(operation, "Finished", "identity", log=self._log)
        self._log.info(f"Origin Access Identity ID: {identity_id}")
        return identity_id

    def create_distribution(
        self,
        bucket_domain: str,
        bucket_id: str,
        identity_id: str,
        comment: str,
        caller_reference: str,
        cache_behavior: Optional[CacheBehaviorSettings] = None,
    ) -> DistributionDescriptor:
        """
        Creates a CloudFront distribution in front of the bucket.

        Simple Explanation:
        This sets up the delivery network. It tells CloudFront:
        1. Where the files come from (the bucket, reached as `bucket_domain`), and
           which identity to use when reading them.
        2. That the main page is `index.html`.
        3. How to cache files and that visitors on http:// are sent to https://.
        AWS answers right away with an ID and a web address (like
        `d1234abcd.cloudfront.net`), although rolling it out worldwide takes a
        while longer.

        Args:
            bucket_domain (str): Origin domain, e.g. `my-bucket.s3.us-east-1.amazonaws.com`.
            bucket_id (str): Origin id, also used as the cache behavior's target.
            identity_id (str): Origin Access Identity id.
            comment (str): Free-form comment stored on the distribution.
            caller_reference (str): Unique token for this create request.
            cache_behavior (Optional[CacheBehaviorSettings]): Defaults when None.

        Returns:
            DistributionDescriptor: Id, identity id and domain name of the new distribution.

        Raises:
            PreconditionError: If the origin domain, origin id or identity is missing.
            ProviderError: If AWS rejects the request.
        """
        operation: str = "create_distribution"
        behavior: CacheBehaviorSettings = cache_behavior or CacheBehaviorSettings()

        missing = [label for label, value in (
            ("bucket domain", bucket_domain),
            ("bucket id", bucket_id),
            ("origin access identity", identity_id),
        ) if not value]
        if missing:
            error = PreconditionError(f"Missing {', '.join(missing)}", operation)
            log_result(operation, "Creating", "distribution", error, self._log)
            raise error

        log_result(operation, "Creating", "distribution", log=self._log)
        try:
            response = self._cf.create_distribution(
                DistributionConfig={
                    "CallerReference": caller_reference,
                    "Comment": comment,
                    "Enabled": True,
                    "DefaultRootObject": behavior.default_root_object,
                    "Origins": {
                        "Quantity": 1,
                        "Items": [
                            {
                                "Id": bucket_id,
                                "DomainName": bucket_domain,
                                "S3OriginConfig": {
                                    "OriginAccessIdentity": f"{IDENTITY_PATH_PREFIX}{identity_id}",
                                },
                            }
                        ],
                    },
                    "DefaultCacheBehavior": behavior.to_request(bucket_id),
                }
            )
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Creating", "distribution", wrapped, self._log)
            raise wrapped from e

        distribution = response["Distribution"]
        descriptor = DistributionDescriptor(
            id=distribution["Id"],
            origin_access_identity_id=identity_id,
            domain_name=distribution["DomainName"],
        )
        log_result(operation, "Finished", "distribution", log=self._log)
        self._log.info(f"Distribution ID: {descriptor.id}")
        self._log.info(f"CloudFront Domain: https://{descriptor.domain_name}")
        return descriptor

    def get_distribution(self, distribution_id: str) -> DistributionDescriptor:
        """Looks up an existing distribution by id."""
        operation: str = "get_distribution"
        if not distribution_id:
            error = PreconditionError("Distribution id is required", operation)
            log_result(operation, "Checking", "distribution", error, self._log)
            raise error

        try:
            response = self._cf.get_distribution(Id=distribution_id)
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Checking", "distribution", wrapped, self._log)
            raise wrapped from e

        distribution = response["Distribution"]
        identity_id: str = ""
        origins = distribution.get("DistributionConfig", {}).get("Origins", {}).get("Items", [])
        for origin in origins:
            identity_path: str = origin.get("S3OriginConfig", {}).get("OriginAccessIdentity", "")
            if identity_path:
                identity_id = identity_path[len(IDENTITY_PATH_PREFIX):] \
                    if identity_path.startswith(IDENTITY_PATH_PREFIX) else identity_path
                break

        log_result(operation, "Finished", "distribution", log=self._log)
        return DistributionDescriptor(
            id=distribution["Id"],
            origin_access_identity_id=identity_id,
            domain_name=distribution["DomainName"],
        )

    def invalidate(self, distribution_id: str, paths: Sequence[str], caller_reference: str) -> str:
        """
        Asks CloudFront to drop its cached copies of `paths`.

        Returns as soon as AWS has accepted the request; the invalidation itself
        keeps running on AWS' side.

        Args:
            distribution_id (str): Distribution to invalidate.
            paths (Sequence[str]): Paths exactly as they should appear in the batch.
            caller_reference (str): Unique token for this request.

        Returns:
            str: The invalidation id.

        Raises:
            PreconditionError: If the distribution id or the path list is empty.
            ProviderError: If AWS rejects the request.
        """
        operation: str = "invalidate"
        if not distribution_id or not paths:
            error = PreconditionError("Distribution id and at least one path are required", operation)
            log_result(operation, "Creating", "invalidation", error, self._log)
            raise error

        items: List[str] = list(paths)
        log_result(operation, "Creating", "invalidation", log=self._log)
        try:
            response = self._cf.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "CallerReference": caller_reference,
                    "Paths": {"Quantity": len(items), "Items": items},
                },
            )
        except BOTO_ERRORS as e:
            wrapped = ProviderError.from_boto(e, operation)
            log_result(operation, "Creating", "invalidation", wrapped, self._log)
            raise wrapped from e

        invalidation_id: str = response["Invalidation"]["Id"]
        log_result(operation, "Finished", "invalidation", log=self._log)
        return invalidation_id
