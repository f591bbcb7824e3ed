"""
Exceptions raised by the deploy steps.

Every fallible step logs its failure and then raises one of these, so the
caller always gets a failure the same way: an exception derived from
`DeployError`.
"""

from typing import List, Optional, Tuple

from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError


class DeployError(Exception):
    """Base class for every deployment failure."""

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message)
        self.operation: str = operation


class PreconditionError(DeployError):
    """A required value (bucket name, distribution id, ...) is missing."""


class LocalFileError(DeployError):
    """A local file could not be opened or read for upload."""

    def __init__(self, message: str, operation: str = "", path: str = "") -> None:
        super().__init__(message, operation)
        self.path: str = path


class ProviderError(DeployError):
    """AWS rejected a request (network, auth or validation failure)."""

    def __init__(self, message: str, operation: str = "", code: Optional[str] = None) -> None:
        super().__init__(message, operation)
        self.code: Optional[str] = code

    @classmethod
    def from_boto(cls, error: Exception, operation: str) -> "ProviderError":
        """Builds a ProviderError from a botocore exception, keeping the AWS error code."""
        code: Optional[str] = None
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code")
        return cls(f"{operation} failed: {error}", operation=operation, code=code)


class UploadError(DeployError):
    """One or more files of an upload batch failed."""

    def __init__(self, failures: List[Tuple[str, BaseException]], operation: str = "upload_all") -> None:
        keys: str = ", ".join(key for key, _ in failures)
        super().__init__(f"{len(failures)} file(s) failed to upload: {keys}", operation)
        self.failures: List[Tuple[str, BaseException]] = failures


# Exceptions boto3 and botocore raise for rejected or failed requests.
BOTO_ERRORS = (ClientError, BotoCoreError, Boto3Error)
