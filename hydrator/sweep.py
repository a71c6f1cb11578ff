"""
Removal of bootstrap credentials: pipeline identity, secrets, deploy key and
repository configuration.

Runs only after the remote destroy has finished (or was deliberately
skipped), so credentials never disappear under running infrastructure.
"""

import logging
from typing import List

from .aws import best_effort
from .catalog import (
    DELEGATION_SET_VARIABLE,
    DEPLOY_KEY_TITLE,
    LEGACY_PIPELINE_SECRETS,
    SECRET_SPECS,
    pipeline_variables,
)
from .errors import CredentialSweepError
from .iam import delete_policy, detach_and_delete_role
from .phases import Context
from .probe import Match, ResourceKind, probe
from .provision import github_oidc_provider_arn

logger = logging.getLogger(__name__)

MAX_DEPLOY_KEY_ATTEMPTS = 10


def delete_pipeline_role(ctx: Context) -> None:
    """Delete the workflow IAM role and its customer policies."""
    config = ctx.config
    iam = ctx.clients.iam

    custom_policies: List[str] = []
    if probe(ctx.clients, ResourceKind.IAM_ROLE, Match.named(config.role_name)):
        logger.info(f"Detaching policies from IAM role: {config.role_name}")
        custom_policies = detach_and_delete_role(iam, config.role_name)
        logger.info(f"Deleted IAM role: {config.role_name}")
        ctx.report.deleted.append(f"IAM role: {config.role_name}")
    else:
        logger.warning(f"IAM role {config.role_name} not found, skipping")

    if config.account_id and config.policy_arn not in custom_policies:
        custom_policies.append(config.policy_arn)

    for policy_arn in custom_policies:
        with best_effort(f"Deleting IAM policy {policy_arn}"):
            if delete_policy(iam, policy_arn):
                logger.info(f"Deleted IAM policy: {policy_arn}")
                ctx.report.deleted.append(f"IAM policy: {policy_arn.rsplit('/', 1)[-1]}")


def delete_github_oidc_provider(ctx: Context) -> None:
    """
    Delete the GitHub Actions identity provider.

    The provider is account-wide and may be trusted by other repositories, so
    it is only removed with --force or an explicit confirmation.
    """
    arn = github_oidc_provider_arn(ctx)
    if not probe(ctx.clients, ResourceKind.OIDC_PROVIDER, Match.named(arn)):
        logger.warning("GitHub OIDC provider not found, skipping")
        return

    if not ctx.flags.force:
        logger.warning("The OIDC provider may be used by other repositories")
        if not ctx.confirm("Delete the GitHub OIDC provider?"):
            logger.info("Keeping OIDC provider")
            ctx.report.preserved.append(f"GitHub OIDC provider: {arn}")
            return

    logger.info(f"Deleting OIDC provider: {arn}")
    ctx.clients.iam.delete_open_id_connect_provider(OpenIDConnectProviderArn=arn)
    ctx.report.deleted.append("GitHub OIDC provider")


def keep_delegation_set(ctx: Context) -> None:
    set_id = ctx.config.delegation_set_id
    if not set_id:
        return
    logger.info(f"Keeping Route53 delegation set {set_id} (nameservers stay stable across rebuilds)")
    ctx.report.preserved.append(f"Route53 delegation set: {set_id}")


def delete_secrets(ctx: Context) -> None:
    """Force-delete every application secret, tolerating absence."""
    sm = ctx.clients.secretsmanager
    for spec in SECRET_SPECS:
        name = ctx.config.secret_name(spec.suffix)
        with best_effort(f"Deleting secret {name}"):
            if not probe(ctx.clients, ResourceKind.SECRET, Match.named(name)):
                logger.info(f"Secret {name} not found, skipping")
                continue
            logger.info(f"Deleting secret: {name}")
            sm.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True)
            ctx.report.deleted.append(f"Secret: {name}")


def titled_deploy_keys(ctx: Context) -> List[int]:
    return [key.id for key in ctx.github.list_deploy_keys() if key.title == DEPLOY_KEY_TITLE]


def delete_deploy_key(ctx: Context) -> None:
    """
    Delete the ArgoCD deploy key, then verify none with its title remain.

    Raises:
        CredentialSweepError: If a titled key is still listed afterwards
    """
    github = ctx.github
    remembered = ctx.config.deploy_key_id

    if remembered:
        logger.info(f"Deleting deploy key: {remembered}")
        with best_effort(f"Deleting deploy key {remembered}"):
            if github.delete_deploy_key(int(remembered)):
                ctx.report.deleted.append(f"Deploy key: {remembered}")

    logger.info(f"Searching for {DEPLOY_KEY_TITLE} deploy keys...")
    for _ in range(MAX_DEPLOY_KEY_ATTEMPTS):
        found = titled_deploy_keys(ctx)
        if not found:
            break
        key_id = found[0]
        logger.info(f"Deleting {DEPLOY_KEY_TITLE} deploy key: {key_id}")
        try:
            github.delete_deploy_key(key_id)
        except Exception as e:
            logger.warning(f"Failed to delete deploy key {key_id}: {e}")
            break
        ctx.report.deleted.append(f"Deploy key: {key_id}")

    remaining = titled_deploy_keys(ctx)
    if remaining:
        raise CredentialSweepError(remaining)
    logger.info(f"No {DEPLOY_KEY_TITLE} deploy keys remain")


def delete_pipeline_config(ctx: Context) -> None:
    """Remove Actions variables and legacy secrets, keeping the delegation set id."""
    github = ctx.github
    names = [name for name in pipeline_variables(ctx.config) if name != DELEGATION_SET_VARIABLE]

    for name in names:
        with best_effort(f"Deleting Actions variable {name}"):
            if github.delete_variable(name):
                logger.info(f"Deleted variable {name}")
                ctx.report.deleted.append(f"Actions variable: {name}")

    for name in LEGACY_PIPELINE_SECRETS:
        with best_effort(f"Deleting Actions secret {name}"):
            if github.delete_secret(name):
                logger.info(f"Deleted secret {name}")
                ctx.report.deleted.append(f"Actions secret: {name}")

    if ctx.config.delegation_set_id:
        ctx.report.preserved.append(f"Actions variable: {DELEGATION_SET_VARIABLE}")
