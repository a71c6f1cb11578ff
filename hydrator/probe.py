"""
Read-only existence probes for every resource kind the orchestrator touches.

All probes go through ``probe(clients, kind, match)`` which returns the
identifiers of matching resources that exist right now. Results are never
cached; intervening steps change the state being probed. Not-found responses
yield an empty list, every other error propagates to the caller.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from .aws import AwsClients, is_not_found

logger = logging.getLogger(__name__)

# Instances in these states still count as existing
LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]


class ResourceKind(Enum):
    """Cloud resource kinds known to the prober."""
    STATE_BUCKET = "s3-bucket"
    LOCK_TABLE = "dynamodb-table"
    DELEGATION_SET = "route53-delegation-set"
    HOSTED_ZONE = "route53-hosted-zone"
    OIDC_PROVIDER = "iam-oidc-provider"
    IAM_ROLE = "iam-role"
    IAM_POLICY = "iam-policy"
    SECRET = "secretsmanager-secret"
    EKS_CLUSTER = "eks-cluster"
    EKS_ADDON = "eks-addon"
    EKS_NODEGROUP = "eks-nodegroup"
    LAUNCH_TEMPLATE = "ec2-launch-template"
    EC2_INSTANCE = "ec2-instance"
    VPC = "ec2-vpc"
    KMS_ALIAS = "kms-alias"
    LOG_GROUP = "logs-log-group"


@dataclass(frozen=True)
class Match:
    """Predicate selecting resources of one kind."""
    names: Tuple[str, ...] = ()
    prefix: Optional[str] = None
    contains: Optional[str] = None
    tags: Tuple[Tuple[str, str], ...] = ()
    scope: Optional[str] = None  # parent resource, e.g. the cluster for add-ons

    @classmethod
    def named(cls, *names: str) -> "Match":
        return cls(names=tuple(names))

    @classmethod
    def within(cls, scope: str, *names: str) -> "Match":
        return cls(names=tuple(names), scope=scope)

    @classmethod
    def prefixed(cls, prefix: str) -> "Match":
        return cls(prefix=prefix)

    @classmethod
    def tagged(cls, key: str, value: str) -> "Match":
        return cls(tags=((key, value),))

    def accepts(self, identifier: str, tags: Optional[Dict[str, str]] = None) -> bool:
        if self.names and identifier not in self.names:
            return False
        if self.prefix and not identifier.startswith(self.prefix):
            return False
        if self.contains and self.contains not in identifier:
            return False
        if self.tags:
            tags = tags or {}
            return all(tags.get(key) == value for key, value in self.tags)
        return True

    def tag_filters(self) -> List[Dict[str, object]]:
        """EC2-style filters for the tag constraints."""
        return [{"Name": f"tag:{key}", "Values": [value]} for key, value in self.tags]


def _exists(call: Callable[[], object]) -> bool:
    try:
        call()
        return True
    except ClientError as e:
        if is_not_found(e):
            return False
        raise


def _probe_buckets(clients: AwsClients, match: Match) -> List[str]:
    return [name for name in match.names if _exists(lambda: clients.s3.head_bucket(Bucket=name))]


def _probe_tables(clients: AwsClients, match: Match) -> List[str]:
    return [
        name for name in match.names
        if _exists(lambda: clients.dynamodb.describe_table(TableName=name))
    ]


def _probe_delegation_sets(clients: AwsClients, match: Match) -> List[str]:
    return [
        set_id for set_id in match.names
        if _exists(lambda: clients.route53.get_reusable_delegation_set(Id=set_id))
    ]


def _probe_hosted_zones(clients: AwsClients, match: Match) -> List[str]:
    found = []
    for name in match.names:
        fqdn = name.rstrip(".") + "."
        response = clients.route53.list_hosted_zones_by_name(DNSName=fqdn)
        for zone in response.get("HostedZones", []):
            if zone["Name"] == fqdn:
                found.append(zone["Id"].replace("/hostedzone/", ""))
    return found


def _probe_oidc_providers(clients: AwsClients, match: Match) -> List[str]:
    response = clients.iam.list_open_id_connect_providers()
    found = []
    for provider in response.get("OpenIDConnectProviderList", []):
        arn = provider["Arn"]
        tags = None
        if match.tags:
            tag_response = clients.iam.list_open_id_connect_provider_tags(OpenIDConnectProviderArn=arn)
            tags = {tag["Key"]: tag["Value"] for tag in tag_response.get("Tags", [])}
        if match.accepts(arn, tags):
            found.append(arn)
    return found


def _probe_roles(clients: AwsClients, match: Match) -> List[str]:
    return [name for name in match.names if _exists(lambda: clients.iam.get_role(RoleName=name))]


def _probe_policies(clients: AwsClients, match: Match) -> List[str]:
    return [arn for arn in match.names if _exists(lambda: clients.iam.get_policy(PolicyArn=arn))]


def _probe_secrets(clients: AwsClients, match: Match) -> List[str]:
    return [
        name for name in match.names
        if _exists(lambda: clients.secretsmanager.describe_secret(SecretId=name))
    ]


def _probe_clusters(clients: AwsClients, match: Match) -> List[str]:
    return [name for name in match.names if _exists(lambda: clients.eks.describe_cluster(name=name))]


def _probe_addons(clients: AwsClients, match: Match) -> List[str]:
    try:
        response = clients.eks.list_addons(clusterName=match.scope)
    except ClientError as e:
        if is_not_found(e):
            return []
        raise
    return [addon for addon in response.get("addons", []) if match.accepts(addon)]


def _probe_nodegroups(clients: AwsClients, match: Match) -> List[str]:
    found = []
    try:
        paginator = clients.eks.get_paginator("list_nodegroups")
        for page in paginator.paginate(clusterName=match.scope):
            found.extend(ng for ng in page.get("nodegroups", []) if match.accepts(ng))
    except ClientError as e:
        if is_not_found(e):
            return []
        raise
    return found


def _probe_launch_templates(clients: AwsClients, match: Match) -> List[str]:
    if not match.names:
        return []
    try:
        response = clients.ec2.describe_launch_templates(LaunchTemplateNames=list(match.names))
    except ClientError as e:
        if is_not_found(e):
            return []
        raise
    return [lt["LaunchTemplateName"] for lt in response.get("LaunchTemplates", [])]


def _probe_instances(clients: AwsClients, match: Match) -> List[str]:
    filters = match.tag_filters() + [
        {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
    ]
    response = clients.ec2.describe_instances(Filters=filters)
    return [
        instance["InstanceId"]
        for reservation in response.get("Reservations", [])
        for instance in reservation.get("Instances", [])
    ]


def _probe_vpcs(clients: AwsClients, match: Match) -> List[str]:
    response = clients.ec2.describe_vpcs(Filters=match.tag_filters())
    return [vpc["VpcId"] for vpc in response.get("Vpcs", [])]


def _probe_kms_aliases(clients: AwsClients, match: Match) -> List[str]:
    return [alias for alias in match.names if _exists(lambda: clients.kms.describe_key(KeyId=alias))]


def _probe_log_groups(clients: AwsClients, match: Match) -> List[str]:
    found = []
    paginator = clients.logs.get_paginator("describe_log_groups")
    for page in paginator.paginate(logGroupNamePrefix=match.prefix):
        found.extend(
            group["logGroupName"] for group in page.get("logGroups", [])
            if match.accepts(group["logGroupName"])
        )
    return found


PROBERS: Dict[ResourceKind, Callable[[AwsClients, Match], List[str]]] = {
    ResourceKind.STATE_BUCKET: _probe_buckets,
    ResourceKind.LOCK_TABLE: _probe_tables,
    ResourceKind.DELEGATION_SET: _probe_delegation_sets,
    ResourceKind.HOSTED_ZONE: _probe_hosted_zones,
    ResourceKind.OIDC_PROVIDER: _probe_oidc_providers,
    ResourceKind.IAM_ROLE: _probe_roles,
    ResourceKind.IAM_POLICY: _probe_policies,
    ResourceKind.SECRET: _probe_secrets,
    ResourceKind.EKS_CLUSTER: _probe_clusters,
    ResourceKind.EKS_ADDON: _probe_addons,
    ResourceKind.EKS_NODEGROUP: _probe_nodegroups,
    ResourceKind.LAUNCH_TEMPLATE: _probe_launch_templates,
    ResourceKind.EC2_INSTANCE: _probe_instances,
    ResourceKind.VPC: _probe_vpcs,
    ResourceKind.KMS_ALIAS: _probe_kms_aliases,
    ResourceKind.LOG_GROUP: _probe_log_groups,
}


def probe(clients: AwsClients, kind: ResourceKind, match: Match) -> List[str]:
    """
    Return identifiers of existing resources of ``kind`` selected by ``match``.

    Args:
        clients: AWS clients
        kind: Resource kind to query
        match: Selection predicate

    Returns:
        Identifiers (names, ARNs or ids depending on the kind)
    """
    found = PROBERS[kind](clients, match)
    logger.debug(f"probe {kind.value} {match}: {found}")
    return found


def exists(clients: AwsClients, kind: ResourceKind, match: Match) -> bool:
    return bool(probe(clients, kind, match))
