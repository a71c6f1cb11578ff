"""
IAM role and policy removal helpers.
"""

import logging
from typing import List

from botocore.exceptions import ClientError

from .aws import is_not_found

logger = logging.getLogger(__name__)


def detach_and_delete_role(iam, role_name: str) -> List[str]:
    """
    Detach managed policies, drop inline policies, then delete the role.

    Returns:
        ARNs of detached customer policies named after the role, which the
        caller may delete once the role is gone
    """
    custom_policies = []
    paginator = iam.get_paginator("list_attached_role_policies")
    for page in paginator.paginate(RoleName=role_name):
        for policy in page.get("AttachedPolicies", []):
            arn = policy["PolicyArn"]
            iam.detach_role_policy(RoleName=role_name, PolicyArn=arn)
            logger.debug(f"Detached {arn} from {role_name}")
            if f":policy/{role_name}" in arn:
                custom_policies.append(arn)

    paginator = iam.get_paginator("list_role_policies")
    for page in paginator.paginate(RoleName=role_name):
        for policy_name in page.get("PolicyNames", []):
            iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)
            logger.debug(f"Deleted inline policy {policy_name} from {role_name}")

    iam.delete_role(RoleName=role_name)
    return custom_policies


def delete_policy(iam, policy_arn: str) -> bool:
    """
    Delete a customer managed policy, removing non-default versions first.

    Returns:
        False if the policy did not exist
    """
    try:
        versions = iam.list_policy_versions(PolicyArn=policy_arn).get("Versions", [])
    except ClientError as e:
        if is_not_found(e):
            return False
        raise

    for version in versions:
        if not version.get("IsDefaultVersion"):
            iam.delete_policy_version(PolicyArn=policy_arn, VersionId=version["VersionId"])
            logger.info(f"Deleted policy version: {version['VersionId']}")

    iam.delete_policy(PolicyArn=policy_arn)
    return True
