"""
AWS session handling and shared error classification.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .errors import PreconditionError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({
    "404",
    "NotFound",
    "NoSuchEntity",
    "NoSuchBucket",
    "NoSuchKey",
    "NoSuchHostedZone",
    "NoSuchDelegationSet",
    "ResourceNotFoundException",
    "NotFoundException",
    "InvalidLaunchTemplateName.NotFoundException",
    "InvalidLaunchTemplateId.NotFound",
    "InvalidInstanceID.NotFound",
    "InvalidVpcID.NotFound",
})


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def is_not_found(error: Exception) -> bool:
    """Return True if a botocore error means the resource does not exist."""
    return isinstance(error, ClientError) and error_code(error) in NOT_FOUND_CODES


class AwsClients:
    """Lazily created boto3 clients bound to one session and region."""

    def __init__(self, region: str, session: Optional[boto3.Session] = None):
        self.region = region
        self.session = session or boto3.Session(region_name=region)
        self._clients = {}

    def client(self, service: str):
        if service not in self._clients:
            # IAM and Route 53 are global; region is ignored there
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]

    @property
    def s3(self):
        return self.client("s3")

    @property
    def dynamodb(self):
        return self.client("dynamodb")

    @property
    def iam(self):
        return self.client("iam")

    @property
    def sts(self):
        return self.client("sts")

    @property
    def eks(self):
        return self.client("eks")

    @property
    def ec2(self):
        return self.client("ec2")

    @property
    def kms(self):
        return self.client("kms")

    @property
    def logs(self):
        return self.client("logs")

    @property
    def route53(self):
        return self.client("route53")

    @property
    def secretsmanager(self):
        return self.client("secretsmanager")


def caller_account_id(clients: AwsClients) -> str:
    """
    Verify AWS credentials and return the caller's account id.

    Raises:
        PreconditionError: If credentials are missing or rejected
    """
    try:
        identity = clients.sts.get_caller_identity()
    except NoCredentialsError as e:
        raise PreconditionError("AWS credentials not configured.") from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"AWS credentials rejected: {e}") from e
    return identity["Account"]


@contextmanager
def best_effort(action: str) -> Iterator[None]:
    """
    Run a cleanup call whose failure must never abort the run.

    Not-found errors are logged as already gone; anything else is logged as a
    warning and swallowed.
    """
    try:
        yield
    except ClientError as e:
        if is_not_found(e):
            logger.info(f"{action}: already gone")
        else:
            logger.warning(f"{action} failed: {e}")
    except Exception as e:
        logger.warning(f"{action} failed: {e}")
