"""
Idempotent creation of the bootstrap resources the Terraform pipeline needs.

Every step probes first and only creates what is missing. Existing resources
are never modified. Generated identifiers are flushed to the configuration
file as soon as they exist so an interrupted run can be resumed or cleaned up.
"""

import json
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .catalog import (
    ARGOCD_SECRET,
    DEPLOY_KEY_TITLE,
    GITHUB_OIDC_AUDIENCE,
    GITHUB_OIDC_HOST,
    GITHUB_OIDC_THUMBPRINTS,
    SECRET_SPECS,
    pipeline_variables,
)
from .config import remember, save_config
from .errors import GitHubError, ProvisionError
from .phases import Context, Phase
from .probe import Match, ResourceKind, exists

logger = logging.getLogger(__name__)

MANAGED_BY_TAG = {"Key": "managed-by", "Value": "hydrator"}


@contextmanager
def creating(what: str) -> Iterator[None]:
    """Turn any provider failure during creation into an aborting ProvisionError."""
    try:
        yield
    except (ClientError, BotoCoreError, GitHubError) as e:
        raise ProvisionError(f"Failed to create {what}: {e}") from e


def _tags(ctx: Context) -> List[dict]:
    return [
        MANAGED_BY_TAG,
        {"Key": "project", "Value": ctx.config.project_name},
        {"Key": "environment", "Value": ctx.config.environment},
    ]


def ensure_state_bucket(ctx: Context) -> None:
    """Versioned, encrypted, private S3 bucket for Terraform state."""
    bucket = ctx.config.state_bucket
    s3 = ctx.clients.s3

    if exists(ctx.clients, ResourceKind.STATE_BUCKET, Match.named(bucket)):
        logger.info(f"S3 bucket {bucket} already exists, skipping")
        ctx.report.existing.append(f"S3 bucket: {bucket}")
        return

    logger.info(f"Creating S3 bucket: {bucket}")
    with creating(f"S3 bucket {bucket}"):
        create_args = {"Bucket": bucket}
        if ctx.config.region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": ctx.config.region}
        s3.create_bucket(**create_args)
        s3.put_bucket_versioning(Bucket=bucket, VersioningConfiguration={"Status": "Enabled"})
        s3.put_public_access_block(
            Bucket=bucket,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        s3.put_bucket_encryption(
            Bucket=bucket,
            ServerSideEncryptionConfiguration={
                "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
            },
        )
    ctx.report.created.append(f"S3 bucket: {bucket}")


def ensure_lock_table(ctx: Context) -> None:
    table = ctx.config.lock_table
    dynamodb = ctx.clients.dynamodb

    if exists(ctx.clients, ResourceKind.LOCK_TABLE, Match.named(table)):
        logger.info(f"DynamoDB table {table} already exists, skipping")
        ctx.report.existing.append(f"DynamoDB table: {table}")
        return

    logger.info(f"Creating DynamoDB table: {table}")
    with creating(f"DynamoDB table {table}"):
        dynamodb.create_table(
            TableName=table,
            AttributeDefinitions=[{"AttributeName": "LockID", "AttributeType": "S"}],
            KeySchema=[{"AttributeName": "LockID", "KeyType": "HASH"}],
            BillingMode="PAY_PER_REQUEST",
            Tags=_tags(ctx),
        )
        dynamodb.get_waiter("table_exists").wait(TableName=table)
    ctx.report.created.append(f"DynamoDB table: {table}")


def ensure_delegation_set(ctx: Context) -> None:
    """Reusable Route 53 delegation set, so nameservers survive rebuilds."""
    config = ctx.config
    if not config.domain_name:
        logger.info("DOMAIN_NAME not set, no delegation set needed")
        return

    if config.delegation_set_id and exists(
        ctx.clients, ResourceKind.DELEGATION_SET, Match.named(config.delegation_set_id)
    ):
        logger.info(f"Delegation set {config.delegation_set_id} already exists, skipping")
        ctx.report.existing.append(f"Delegation set: {config.delegation_set_id}")
        return

    logger.info("Creating reusable delegation set...")
    with creating("reusable delegation set"):
        response = ctx.clients.route53.create_reusable_delegation_set(
            CallerReference=f"{config.cluster_name}-{uuid.uuid4().hex[:12]}"
        )
    delegation_set = response["DelegationSet"]
    set_id = delegation_set["Id"].replace("/delegationset/", "")
    ctx.config = remember(ctx.config, ctx.config_file, delegation_set_id=set_id)

    logger.info(f"Delegation set {set_id} nameservers (configure these at the registrar):")
    for nameserver in delegation_set.get("NameServers", []):
        logger.info(f"  {nameserver}")
    ctx.report.created.append(f"Delegation set: {set_id}")


def github_oidc_provider_arn(ctx: Context) -> str:
    return f"arn:aws:iam::{ctx.config.account_id}:oidc-provider/{GITHUB_OIDC_HOST}"


def ensure_oidc_provider(ctx: Context) -> None:
    arn = github_oidc_provider_arn(ctx)
    if exists(ctx.clients, ResourceKind.OIDC_PROVIDER, Match.named(arn)):
        logger.info("GitHub OIDC provider already exists, skipping")
        ctx.report.existing.append(f"OIDC provider: {GITHUB_OIDC_HOST}")
        return

    logger.info("Creating GitHub OIDC provider...")
    with creating("GitHub OIDC provider"):
        ctx.clients.iam.create_open_id_connect_provider(
            Url=f"https://{GITHUB_OIDC_HOST}",
            ClientIDList=[GITHUB_OIDC_AUDIENCE],
            ThumbprintList=GITHUB_OIDC_THUMBPRINTS,
            Tags=_tags(ctx),
        )
    ctx.report.created.append(f"OIDC provider: {GITHUB_OIDC_HOST}")


def trust_policy(ctx: Context) -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Federated": github_oidc_provider_arn(ctx)},
            "Action": "sts:AssumeRoleWithWebIdentity",
            "Condition": {
                "StringEquals": {f"{GITHUB_OIDC_HOST}:aud": GITHUB_OIDC_AUDIENCE},
                "StringLike": {f"{GITHUB_OIDC_HOST}:sub": f"repo:{ctx.config.repo_slug}:*"},
            },
        }],
    }


def pipeline_policy(ctx: Context) -> dict:
    """Permissions the Terraform workflows need to manage the platform."""
    config = ctx.config
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "TerraformState",
                "Effect": "Allow",
                "Action": ["s3:ListBucket", "s3:GetObject", "s3:PutObject", "s3:DeleteObject"],
                "Resource": [
                    f"arn:aws:s3:::{config.state_bucket}",
                    f"arn:aws:s3:::{config.state_bucket}/*",
                ],
            },
            {
                "Sid": "TerraformLocks",
                "Effect": "Allow",
                "Action": ["dynamodb:GetItem", "dynamodb:PutItem", "dynamodb:DeleteItem",
                           "dynamodb:DescribeTable"],
                "Resource": f"arn:aws:dynamodb:{config.region}:{config.account_id}:table/{config.lock_table}",
            },
            {
                "Sid": "PlatformResources",
                "Effect": "Allow",
                "Action": [
                    "ec2:*", "eks:*", "elasticloadbalancing:*", "autoscaling:*",
                    "kms:*", "logs:*", "route53:*", "secretsmanager:*", "ssm:GetParameter*",
                    "iam:*Role*", "iam:*Policy*", "iam:*OpenIDConnectProvider*",
                    "iam:*InstanceProfile*", "iam:PassRole", "iam:CreateServiceLinkedRole",
                ],
                "Resource": "*",
            },
        ],
    }


def ensure_pipeline_role(ctx: Context) -> None:
    """IAM role assumable by the repository's workflows, with its custom policy."""
    config = ctx.config
    iam = ctx.clients.iam
    created_any = False

    if exists(ctx.clients, ResourceKind.IAM_ROLE, Match.named(config.role_name)):
        logger.info(f"IAM role {config.role_name} already exists, skipping")
        ctx.report.existing.append(f"IAM role: {config.role_name}")
    else:
        logger.info(f"Creating IAM role: {config.role_name}")
        with creating(f"IAM role {config.role_name}"):
            iam.create_role(
                RoleName=config.role_name,
                AssumeRolePolicyDocument=json.dumps(trust_policy(ctx)),
                Description=f"GitHub Actions role for {config.repo_slug}",
                Tags=_tags(ctx),
            )
        ctx.report.created.append(f"IAM role: {config.role_name}")
        created_any = True

    if exists(ctx.clients, ResourceKind.IAM_POLICY, Match.named(config.policy_arn)):
        logger.info(f"IAM policy {config.policy_name} already exists, skipping")
        ctx.report.existing.append(f"IAM policy: {config.policy_name}")
    else:
        logger.info(f"Creating IAM policy: {config.policy_name}")
        with creating(f"IAM policy {config.policy_name}"):
            iam.create_policy(
                PolicyName=config.policy_name,
                PolicyDocument=json.dumps(pipeline_policy(ctx)),
                Description=f"Terraform permissions for {config.repo_slug}",
                Tags=_tags(ctx),
            )
        ctx.report.created.append(f"IAM policy: {config.policy_name}")
        created_any = True

    if created_any:
        with creating(f"policy attachment on {config.role_name}"):
            iam.attach_role_policy(RoleName=config.role_name, PolicyArn=config.policy_arn)


def ensure_secrets(ctx: Context, environ: Optional[Mapping[str, str]] = None) -> None:
    """Create each application secret that is missing and has a value source."""
    environ = os.environ if environ is None else environ
    sm = ctx.clients.secretsmanager

    for spec in SECRET_SPECS:
        name = ctx.config.secret_name(spec.suffix)
        if exists(ctx.clients, ResourceKind.SECRET, Match.named(name)):
            logger.info(f"Secret {name} already exists, skipping")
            ctx.report.existing.append(f"Secret: {name}")
            continue

        value = spec.source(ctx.config, environ)
        if value is None:
            message = f"Secret {name} not created ({spec.hint})"
            logger.warning(message)
            ctx.report.warnings.append(message)
            continue

        logger.info(f"Creating secret: {name}")
        with creating(f"secret {name}"):
            sm.create_secret(Name=name, Description=spec.description, SecretString=value, Tags=_tags(ctx))
        ctx.report.created.append(f"Secret: {name}")


def ensure_deploy_key(ctx: Context) -> None:
    """Register the public half of the ArgoCD SSH secret as a read-only deploy key."""
    config = ctx.config
    github = ctx.github

    with creating("ArgoCD deploy key"):
        keys = github.list_deploy_keys()

    if config.deploy_key_id and any(str(key.id) == str(config.deploy_key_id) for key in keys):
        logger.info(f"Deploy key {config.deploy_key_id} already registered, skipping")
        ctx.report.existing.append(f"Deploy key: {config.deploy_key_id}")
        return

    titled = [key for key in keys if key.title == DEPLOY_KEY_TITLE]
    if titled:
        key_id = str(titled[0].id)
        logger.info(f"Found existing {DEPLOY_KEY_TITLE} deploy key {key_id}, recording it")
        ctx.config = remember(ctx.config, ctx.config_file, deploy_key_id=key_id)
        ctx.report.existing.append(f"Deploy key: {key_id}")
        return

    secret_name = config.secret_name(ARGOCD_SECRET)
    with creating(f"deploy key from {secret_name}"):
        secret = ctx.clients.secretsmanager.get_secret_value(SecretId=secret_name)
        public_key = json.loads(secret["SecretString"])["sshPublicKey"]
        key = github.add_deploy_key(DEPLOY_KEY_TITLE, public_key, read_only=True)

    ctx.config = remember(ctx.config, ctx.config_file, deploy_key_id=str(key.id))
    logger.info(f"Registered {DEPLOY_KEY_TITLE} deploy key (ID: {key.id})")
    ctx.report.created.append(f"Deploy key: {key.id}")


def ensure_pipeline_config(ctx: Context) -> None:
    """Repository Actions variables consumed by the Terraform workflows."""
    github = ctx.github
    for name, value in pipeline_variables(ctx.config).items():
        with creating(f"Actions variable {name}"):
            if github.get_variable(name) is not None:
                logger.info(f"Variable {name} already set, skipping")
                ctx.report.existing.append(f"Actions variable: {name}")
                continue
            github.create_variable(name, value)
        logger.info(f"Set variable {name}")
        ctx.report.created.append(f"Actions variable: {name}")


BACKEND_TEMPLATE = """terraform {{
  backend "s3" {{
    bucket         = "{bucket}"
    key            = "{key}"
    region         = "{region}"
    dynamodb_table = "{table}"
    encrypt        = true
  }}
}}
"""


def write_backend_file(ctx: Context) -> None:
    config = ctx.config
    env_dir = ctx.workdir / "terraform" / "environments" / config.environment
    if not env_dir.is_dir():
        logger.info(f"{env_dir} not found, skipping backend.tf")
        return

    backend = env_dir / "backend.tf"
    if backend.exists():
        logger.info(f"{backend} already exists, skipping")
        ctx.report.existing.append(f"Local file: {backend}")
        return

    backend.write_text(BACKEND_TEMPLATE.format(
        bucket=config.state_bucket, key=config.state_key, region=config.region, table=config.lock_table,
    ))
    logger.info(f"Wrote {backend}")
    ctx.report.created.append(f"Local file: {backend}")


def save_checkpoint(ctx: Context) -> None:
    save_config(ctx.config, ctx.config_file)


PROVISION_PHASES = (
    Phase("Save configuration", save_checkpoint),
    Phase("State bucket", ensure_state_bucket),
    Phase("Lock table", ensure_lock_table),
    Phase("Delegation set", ensure_delegation_set),
    Phase("GitHub OIDC provider", ensure_oidc_provider),
    Phase("Pipeline IAM role and policy", ensure_pipeline_role),
    Phase("Application secrets", ensure_secrets),
    Phase("ArgoCD deploy key", ensure_deploy_key),
    Phase("Pipeline configuration", ensure_pipeline_config),
    Phase("Terraform backend file", write_backend_file),
    Phase("Save configuration", save_checkpoint),
)
