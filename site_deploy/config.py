"""
Deployment settings.

`DeployOptions` is what the calling pipeline hands us. `resolve()` turns it into
an immutable `DeployConfig`, with environment variables taking precedence over
option values. Nothing below this module reads the environment.
"""

import enum
import os
import re
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

# --- Constants ---

ENV_ACCESS_KEY_ID: str = "AWS_ACCESS_KEY_ID"
ENV_SECRET_ACCESS_KEY: str = "AWS_SECRET_ACCESS_KEY"
ENV_REGION: str = "AWS_REGION"
ENV_BUCKET: str = "AWS_BUCKET"
ENV_DISTRIBUTION_ID: str = "AWS_DISTRIBUTION_ID"

CALLER_REFERENCE_PREFIX: str = "site-deploy:deploy_"
DEFAULT_REGION: str = "us-east-1"
DEFAULT_COMMENT: str = "Static site deployed by site-deploy"
DEFAULT_INVALIDATION_PATHS: Tuple[str, ...] = ("/index.html",)
DEFAULT_MAX_CONCURRENCY: int = 8
BUCKET_NAME_PREFIX: str = "site-deploy-"
MAX_BUCKET_NAME_LENGTH: int = 63


class InvalidationPolicy(str, enum.Enum):
    """Which CloudFront paths get invalidated after an upload."""

    FIXED = "fixed"  # the configured path list, `/index.html` by default
    MANIFEST = "manifest"  # every uploaded key
    WILDCARD = "wildcard"  # `/*`


@dataclass
class DeployOptions:
    """Options supplied by the caller. Every field may be left empty."""

    bucket: Optional[str] = None
    region: Optional[str] = None
    distribution_id: Optional[str] = None
    name: Optional[str] = None
    comment: Optional[str] = None
    invalidation_policy: InvalidationPolicy = InvalidationPolicy.FIXED
    invalidation_paths: Tuple[str, ...] = DEFAULT_INVALIDATION_PATHS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY


@dataclass(frozen=True)
class DeployConfig:
    """Resolved settings for one deploy run."""

    bucket_name: str
    region: str
    distribution_id: str
    name: str
    caller_reference: str
    access_key_id: str = field(default="", repr=False)
    secret_access_key: str = field(default="", repr=False)
    comment: str = DEFAULT_COMMENT
    invalidation_policy: InvalidationPolicy = InvalidationPolicy.FIXED
    invalidation_paths: Tuple[str, ...] = DEFAULT_INVALIDATION_PATHS
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    @property
    def effective_region(self) -> str:
        """Region to talk to; an unset region means us-east-1."""
        return self.region or DEFAULT_REGION


def make_caller_reference() -> str:
    """
    Returns a new caller reference for CloudFront create calls.

    Two calls within the same millisecond return the same value.
    """
    return f"{CALLER_REFERENCE_PREFIX}{int(time.time() * 1000)}"


def bucket_name_for(name: str) -> str:
    """
    Derives a bucket name from a project name, or "" when there is nothing usable.

    `My Site` becomes `site-deploy-my-site`. Bucket names allow only lowercase
    letters, digits and hyphens here, and at most 63 characters.
    """
    slug: str = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if not slug:
        return ""
    return f"{BUCKET_NAME_PREFIX}{slug}"[:MAX_BUCKET_NAME_LENGTH].rstrip("-")


def _pick(environ: Mapping[str, str], env_name: Optional[str], option_value: Optional[str]) -> str:
    if env_name and environ.get(env_name):
        return environ[env_name]
    return option_value or ""


def resolve(options: Optional[DeployOptions] = None, environ: Optional[Mapping[str, str]] = None) -> DeployConfig:
    """
    Builds the `DeployConfig` for a run.

    For each field: environment variable first, then the option value, then an
    empty string. Without a bucket from either source, a bucket name is derived
    from the project name when one is given. Empty values are rejected later by
    the step that needs them.

    Args:
        options (Optional[DeployOptions]): Caller-supplied options.
        environ (Optional[Mapping[str, str]]): Environment to read. Defaults to `os.environ`.

    Returns:
        DeployConfig: The resolved, immutable settings, with a fresh caller reference.

    Raises:
        ValueError: If `options.invalidation_policy` is not a known policy.
    """
    options = options or DeployOptions()
    env: Mapping[str, str] = os.environ if environ is None else environ

    name: str = options.name or ""
    comment: str = options.comment or (f"{name} static site" if name else DEFAULT_COMMENT)

    return DeployConfig(
        bucket_name=_pick(env, ENV_BUCKET, options.bucket) or bucket_name_for(name),
        region=_pick(env, ENV_REGION, options.region),
        distribution_id=_pick(env, ENV_DISTRIBUTION_ID, options.distribution_id),
        name=name,
        caller_reference=make_caller_reference(),
        access_key_id=_pick(env, ENV_ACCESS_KEY_ID, None),
        secret_access_key=_pick(env, ENV_SECRET_ACCESS_KEY, None),
        comment=comment,
        invalidation_policy=InvalidationPolicy(options.invalidation_policy),
        invalidation_paths=tuple(options.invalidation_paths),
        max_concurrency=options.max_concurrency,
    )
