"""boto3 session and client construction from a resolved DeployConfig."""

from typing import Any

import boto3
from botocore.config import Config

from .config import DeployConfig

CONNECT_TIMEOUT_SECONDS: int = 10
READ_TIMEOUT_SECONDS: int = 60


def client_config() -> Config:
    # One attempt per call; failures surface immediately instead of being retried
    return Config(
        connect_timeout=CONNECT_TIMEOUT_SECONDS,
        read_timeout=READ_TIMEOUT_SECONDS,
        retries={"total_max_attempts": 1, "mode": "standard"},
    )


def make_session(config: DeployConfig) -> boto3.session.Session:
    """
    Creates a boto3 session from the explicit credentials in `config`.

    Empty credentials are passed as None so boto3 falls back to its usual
    credential chain (profile, instance role, ...).
    """
    return boto3.session.Session(
        aws_access_key_id=config.access_key_id or None,
        aws_secret_access_key=config.secret_access_key or None,
        region_name=config.effective_region,
    )


def make_client(service: str, config: DeployConfig) -> Any:
    return make_session(config).client(service, config=client_config())
