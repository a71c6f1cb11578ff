"""
Best-effort removal of resources a failed or partial destroy leaves behind.

Candidates are plain data: a resource kind plus a match predicate, evaluated
in a fixed order (add-ons and node pools before the cluster, aliases before
keys, policies detached before roles). Every probe and deletion is wrapped so
that not-found and any other error is logged and the next candidate proceeds.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .aws import AwsClients, best_effort, is_not_found
from .config import RunConfig
from .iam import delete_policy, detach_and_delete_role
from .phases import Context
from .probe import Match, ResourceKind, probe

logger = logging.getLogger(__name__)

EKS_ADDONS = ("coredns", "vpc-cni", "kube-proxy")
ORPHAN_ROLE_SUFFIXES = ("eks-cluster", "eks-nodes", "external-secrets")
KMS_PENDING_WINDOW_DAYS = 7


@dataclass(frozen=True)
class OrphanCandidate:
    kind: ResourceKind
    match: Match
    description: str


def orphan_candidates(config: RunConfig, issuer: Optional[str] = None) -> List[OrphanCandidate]:
    """
    Ordered list of secondary resources to look for.

    Args:
        config: Run configuration
        issuer: The cluster's OIDC issuer (without scheme) if it could be read
    """
    cluster = config.cluster_name
    if issuer:
        oidc_match = Match(contains=issuer)
    else:
        oidc_match = Match.tagged("Name", f"{cluster}-eks-irsa")

    return [
        OrphanCandidate(ResourceKind.EKS_ADDON, Match.within(cluster, *EKS_ADDONS), "EKS addon"),
        OrphanCandidate(ResourceKind.LAUNCH_TEMPLATE, Match.named(f"{cluster}-eks-nodes"), "Launch Template"),
        OrphanCandidate(ResourceKind.EKS_NODEGROUP, Match.within(cluster), "EKS Node Group"),
        OrphanCandidate(ResourceKind.EKS_CLUSTER, Match.named(cluster), "EKS Cluster"),
        OrphanCandidate(ResourceKind.KMS_ALIAS, Match.named(f"alias/{cluster}-eks"), "KMS alias"),
        OrphanCandidate(ResourceKind.LOG_GROUP, Match.prefixed(f"/aws/eks/{cluster}/cluster"), "CloudWatch Log Group"),
        *[
            OrphanCandidate(ResourceKind.IAM_ROLE, Match.named(f"{cluster}-{suffix}"), "IAM role")
            for suffix in ORPHAN_ROLE_SUFFIXES
        ],
        OrphanCandidate(ResourceKind.OIDC_PROVIDER, oidc_match, "EKS OIDC provider"),
    ]


def _delete_addon(clients: AwsClients, addon: str, match: Match) -> None:
    clients.eks.delete_addon(clusterName=match.scope, addonName=addon)


def _delete_launch_template(clients: AwsClients, name: str, match: Match) -> None:
    clients.ec2.delete_launch_template(LaunchTemplateName=name)


def _delete_nodegroup(clients: AwsClients, nodegroup: str, match: Match) -> None:
    clients.eks.delete_nodegroup(clusterName=match.scope, nodegroupName=nodegroup)
    clients.eks.get_waiter("nodegroup_deleted").wait(clusterName=match.scope, nodegroupName=nodegroup)


def _delete_cluster(clients: AwsClients, name: str, match: Match) -> None:
    clients.eks.delete_cluster(name=name)
    clients.eks.get_waiter("cluster_deleted").wait(name=name)


def _delete_kms_alias(clients: AwsClients, alias: str, match: Match) -> None:
    key_id = clients.kms.describe_key(KeyId=alias)["KeyMetadata"]["KeyId"]
    with best_effort(f"Deleting KMS alias {alias}"):
        clients.kms.delete_alias(AliasName=alias)
    logger.info(f"Scheduling orphaned KMS key for deletion: {key_id}")
    clients.kms.schedule_key_deletion(KeyId=key_id, PendingWindowInDays=KMS_PENDING_WINDOW_DAYS)


def _delete_log_group(clients: AwsClients, name: str, match: Match) -> None:
    clients.logs.delete_log_group(logGroupName=name)


def _delete_role(clients: AwsClients, role_name: str, match: Match) -> None:
    custom_policies = detach_and_delete_role(clients.iam, role_name)
    for policy_arn in custom_policies:
        with best_effort(f"Deleting policy {policy_arn}"):
            delete_policy(clients.iam, policy_arn)


def _delete_oidc_provider(clients: AwsClients, arn: str, match: Match) -> None:
    clients.iam.delete_open_id_connect_provider(OpenIDConnectProviderArn=arn)


DELETERS: Dict[ResourceKind, Callable[[AwsClients, str, Match], None]] = {
    ResourceKind.EKS_ADDON: _delete_addon,
    ResourceKind.LAUNCH_TEMPLATE: _delete_launch_template,
    ResourceKind.EKS_NODEGROUP: _delete_nodegroup,
    ResourceKind.EKS_CLUSTER: _delete_cluster,
    ResourceKind.KMS_ALIAS: _delete_kms_alias,
    ResourceKind.LOG_GROUP: _delete_log_group,
    ResourceKind.IAM_ROLE: _delete_role,
    ResourceKind.OIDC_PROVIDER: _delete_oidc_provider,
}


def cluster_issuer(clients: AwsClients, cluster_name: str) -> Optional[str]:
    """OIDC issuer host/path of the cluster, or None if it cannot be read."""
    try:
        cluster = clients.eks.describe_cluster(name=cluster_name)["cluster"]
    except Exception as e:
        if not is_not_found(e):
            logger.debug(f"Could not read issuer for {cluster_name}: {e}")
        return None
    issuer = cluster.get("identity", {}).get("oidc", {}).get("issuer")
    return issuer.replace("https://", "") if issuer else None


def reconcile_orphans(ctx: Context) -> List[str]:
    """
    Delete every orphan candidate that still exists. Never raises for
    provider errors.

    Returns:
        Descriptions of resources whose deletion succeeded
    """
    logger.info("Cleaning up orphaned AWS resources...")
    clients = ctx.clients
    # read before the cluster itself may be deleted below
    issuer = cluster_issuer(clients, ctx.config.cluster_name)

    deleted = []
    for candidate in orphan_candidates(ctx.config, issuer):
        found: List[str] = []
        with best_effort(f"Looking up {candidate.description}"):
            found = probe(clients, candidate.kind, candidate.match)

        for identifier in found:
            logger.info(f"Deleting orphaned {candidate.description}: {identifier}")
            with best_effort(f"Deleting {candidate.description} {identifier}"):
                DELETERS[candidate.kind](clients, identifier, candidate.match)
                deleted.append(f"Orphaned {candidate.description}: {identifier}")

    ctx.report.deleted.extend(deleted)
    logger.info("Orphaned resource cleanup complete")
    return deleted
