"""Deploy a built static site to S3 behind CloudFront."""

from .cloudfront_client import CacheBehaviorSettings, CDNClient, DistributionDescriptor
from .config import DeployConfig, DeployOptions, InvalidationPolicy, resolve
from .deploy import Deployer, DeployReport, DeployStage
from .errors import DeployError, LocalFileError, PreconditionError, ProviderError, UploadError
from .manifest import FileManifest, UploadTask, list_files
from .s3_client import BucketLocation, ObjectStoreClient

__all__ = [
    "BucketLocation",
    "CacheBehaviorSettings",
    "CDNClient",
    "DeployConfig",
    "DeployError",
    "Deployer",
    "DeployOptions",
    "DeployReport",
    "DeployStage",
    "DistributionDescriptor",
    "FileManifest",
    "InvalidationPolicy",
    "LocalFileError",
    "ObjectStoreClient",
    "PreconditionError",
    "ProviderError",
    "UploadError",
    "UploadTask",
    "list_files",
    "resolve",
]
