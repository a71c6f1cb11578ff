"""
Removal of the shared Terraform state bucket and lock table.

The bucket may hold state for other environments or projects. It is only
emptied after a read-only listing shows no state file other than ours.
"""

import logging
from typing import Dict, Iterator, List

from .errors import SharedStateConflict
from .phases import Context
from .probe import Match, ResourceKind, exists

logger = logging.getLogger(__name__)

STATE_SUFFIX = "terraform.tfstate"
# DeleteObjects accepts at most this many keys per call
DELETE_BATCH_SIZE = 1000


def state_files(s3, bucket: str) -> List[str]:
    """Keys of every Terraform state file in the bucket."""
    keys = []
    paginator = s3.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket):
        keys.extend(obj["Key"] for obj in page.get("Contents", []) if obj["Key"].endswith(STATE_SUFFIX))
    return keys


def foreign_state_files(s3, bucket: str, own_key: str) -> List[str]:
    return [key for key in state_files(s3, bucket) if key != own_key]


def check_shared_state(ctx: Context) -> None:
    """
    Refuse to continue while other state files live in the bucket.

    Raises:
        SharedStateConflict: If foreign state exists and --force was not given
    """
    config = ctx.config
    logger.info("Checking for other Terraform state files in shared bucket...")
    others = foreign_state_files(ctx.clients.s3, config.state_bucket, config.state_key)
    if not others:
        return

    for key in others:
        logger.warning(f"  - s3://{config.state_bucket}/{key}")
    if not ctx.flags.force:
        raise SharedStateConflict(config.state_bucket, others)

    logger.warning("--force specified, deleting shared state bucket anyway...")
    ctx.report.warnings.append(
        "Deleted state bucket still holding: " + ", ".join(others)
    )


def _object_versions(s3, bucket: str) -> Iterator[Dict[str, str]]:
    paginator = s3.get_paginator("list_object_versions")
    for page in paginator.paginate(Bucket=bucket):
        for entry in page.get("Versions", []) + page.get("DeleteMarkers", []):
            yield {"Key": entry["Key"], "VersionId": entry["VersionId"]}


def empty_bucket(s3, bucket: str) -> int:
    """
    Delete every object version and delete marker in a versioned bucket.

    Returns:
        Number of versions removed
    """
    # collect first so deletions don't disturb pagination
    targets = list(_object_versions(s3, bucket))
    for start in range(0, len(targets), DELETE_BATCH_SIZE):
        batch = targets[start:start + DELETE_BATCH_SIZE]
        response = s3.delete_objects(Bucket=bucket, Delete={"Objects": batch, "Quiet": True})
        for error in response.get("Errors", []):
            logger.warning(f"Could not delete {error.get('Key')} ({error.get('VersionId')}): {error.get('Message')}")
    return len(targets)


def delete_state_bucket(ctx: Context) -> None:
    """Guard, empty and delete the state bucket."""
    config = ctx.config
    s3 = ctx.clients.s3

    if not exists(ctx.clients, ResourceKind.STATE_BUCKET, Match.named(config.state_bucket)):
        logger.warning(f"S3 bucket {config.state_bucket} not found, skipping")
        return

    check_shared_state(ctx)

    logger.info(f"Emptying S3 bucket (including all versions): {config.state_bucket}")
    removed = empty_bucket(s3, config.state_bucket)
    logger.debug(f"Removed {removed} object versions")

    logger.info(f"Deleting S3 bucket: {config.state_bucket}")
    s3.delete_bucket(Bucket=config.state_bucket)
    ctx.report.deleted.append(f"S3 bucket: {config.state_bucket}")


def delete_lock_table(ctx: Context) -> None:
    config = ctx.config
    if not exists(ctx.clients, ResourceKind.LOCK_TABLE, Match.named(config.lock_table)):
        logger.warning(f"DynamoDB table {config.lock_table} not found, skipping")
        return

    logger.info(f"Deleting DynamoDB table: {config.lock_table}")
    ctx.clients.dynamodb.delete_table(TableName=config.lock_table)
    ctx.report.deleted.append(f"DynamoDB table: {config.lock_table}")
