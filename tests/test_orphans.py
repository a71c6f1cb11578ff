"""
Tests for best-effort orphan reconciliation.
"""

from hydrator.orphans import cluster_issuer, orphan_candidates, reconcile_orphans
from hydrator.probe import ResourceKind

from conftest import client_error, pages


class TestCandidates:
    """Test the ordered candidate list."""

    def test_order(self, config):
        """Test dependents come before the cluster and roles before providers."""
        kinds = [c.kind for c in orphan_candidates(config)]

        assert kinds.index(ResourceKind.EKS_ADDON) < kinds.index(ResourceKind.EKS_CLUSTER)
        assert kinds.index(ResourceKind.EKS_NODEGROUP) < kinds.index(ResourceKind.EKS_CLUSTER)
        assert kinds[-1] is ResourceKind.OIDC_PROVIDER
        assert kinds.count(ResourceKind.IAM_ROLE) == 3

    def test_issuer_match(self, config):
        issuer = "oidc.eks.ca-central-1.amazonaws.com/id/ABC"
        match = orphan_candidates(config, issuer)[-1].match

        assert match.accepts(f"arn:aws:iam::123456789012:oidc-provider/{issuer}")
        assert not match.accepts("arn:aws:iam::123456789012:oidc-provider/token.actions.githubusercontent.com")

    def test_issuer_read_from_cluster(self, ctx):
        ctx.clients.eks.describe_cluster.return_value = {
            "cluster": {"identity": {"oidc": {"issuer": "https://oidc.eks.x.amazonaws.com/id/ABC"}}}
        }
        assert cluster_issuer(ctx.clients, "xperts-dev") == "oidc.eks.x.amazonaws.com/id/ABC"

        ctx.clients.eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        assert cluster_issuer(ctx.clients, "xperts-dev") is None


class TestReconcile:
    """Test that failures never stop the reconciler."""

    def test_not_found_everywhere(self, ctx):
        """Test a fully clean account completes without deletions."""
        clients = ctx.clients
        clients.eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        clients.eks.list_addons.side_effect = client_error("ResourceNotFoundException")
        clients.eks.get_paginator.return_value.paginate.side_effect = client_error("ResourceNotFoundException")
        clients.ec2.describe_launch_templates.side_effect = client_error(
            "InvalidLaunchTemplateName.NotFoundException"
        )
        clients.kms.describe_key.side_effect = client_error("NotFoundException")
        clients.logs.get_paginator.return_value = pages({"logGroups": []})
        clients.iam.get_role.side_effect = client_error("NoSuchEntity")
        clients.iam.list_open_id_connect_providers.return_value = {"OpenIDConnectProviderList": []}

        assert reconcile_orphans(ctx) == []

    def test_delete_not_found_treated_as_success(self, ctx):
        """Test a deletion racing to not-found moves on to the next candidate."""
        clients = ctx.clients
        clients.eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        clients.eks.list_addons.return_value = {"addons": ["coredns", "vpc-cni"]}
        clients.eks.delete_addon.side_effect = client_error("ResourceNotFoundException")
        clients.eks.get_paginator.return_value = pages({"nodegroups": []})
        clients.ec2.describe_launch_templates.return_value = {"LaunchTemplates": []}
        clients.kms.describe_key.side_effect = client_error("NotFoundException")
        clients.logs.get_paginator.return_value = pages(
            {"logGroups": [{"logGroupName": "/aws/eks/xperts-dev/cluster"}]}
        )
        clients.iam.get_role.side_effect = client_error("NoSuchEntity")
        clients.iam.list_open_id_connect_providers.return_value = {"OpenIDConnectProviderList": []}

        deleted = reconcile_orphans(ctx)

        assert clients.eks.delete_addon.call_count == 2
        clients.logs.delete_log_group.assert_called_once_with(logGroupName="/aws/eks/xperts-dev/cluster")
        assert deleted == ["Orphaned CloudWatch Log Group: /aws/eks/xperts-dev/cluster"]

    def test_unexpected_errors_do_not_abort(self, ctx):
        """Test probe and delete failures of any kind are swallowed."""
        clients = ctx.clients
        clients.eks.describe_cluster.side_effect = RuntimeError("boom")
        clients.eks.list_addons.side_effect = client_error("AccessDeniedException")
        clients.eks.get_paginator.side_effect = client_error("AccessDeniedException")
        clients.ec2.describe_launch_templates.side_effect = client_error("UnauthorizedOperation")
        clients.kms.describe_key.side_effect = client_error("AccessDeniedException")
        clients.logs.get_paginator.side_effect = client_error("AccessDeniedException")
        clients.iam.get_role.side_effect = client_error("AccessDenied")
        clients.iam.list_open_id_connect_providers.side_effect = client_error("AccessDenied")

        assert reconcile_orphans(ctx) == []

    def test_role_removed_with_custom_policy(self, ctx):
        """Test orphan roles are detached, emptied and deleted with their policy."""
        clients = ctx.clients
        cluster = ctx.config.cluster_name
        clients.eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        clients.eks.list_addons.return_value = {"addons": []}
        clients.eks.get_paginator.return_value = pages({"nodegroups": []})
        clients.ec2.describe_launch_templates.return_value = {"LaunchTemplates": []}
        clients.kms.describe_key.side_effect = client_error("NotFoundException")
        clients.logs.get_paginator.return_value = pages({"logGroups": []})
        clients.iam.list_open_id_connect_providers.return_value = {"OpenIDConnectProviderList": []}

        custom = f"arn:aws:iam::123456789012:policy/{cluster}-eks-nodes-extra"
        managed = "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"
        listings = {
            "list_attached_role_policies": pages({"AttachedPolicies": [{"PolicyArn": managed}, {"PolicyArn": custom}]}),
            "list_role_policies": pages({"PolicyNames": ["inline"]}),
        }
        clients.iam.get_paginator.side_effect = lambda name: listings[name]

        def get_role(RoleName):
            if RoleName != f"{cluster}-eks-nodes":
                raise client_error("NoSuchEntity")
            return {}

        clients.iam.get_role.side_effect = get_role
        clients.iam.list_policy_versions.return_value = {"Versions": [{"VersionId": "v1", "IsDefaultVersion": True}]}

        deleted = reconcile_orphans(ctx)

        assert clients.iam.detach_role_policy.call_count == 2
        clients.iam.delete_role_policy.assert_called_once_with(RoleName=f"{cluster}-eks-nodes", PolicyName="inline")
        clients.iam.delete_role.assert_called_once_with(RoleName=f"{cluster}-eks-nodes")
        clients.iam.delete_policy.assert_called_once_with(PolicyArn=custom)
        assert deleted == [f"Orphaned IAM role: {cluster}-eks-nodes"]

    def test_kms_alias_and_key(self, ctx):
        """Test the alias is removed and its key scheduled for deletion."""
        clients = ctx.clients
        clients.eks.describe_cluster.side_effect = client_error("ResourceNotFoundException")
        clients.eks.list_addons.return_value = {"addons": []}
        clients.eks.get_paginator.return_value = pages({"nodegroups": []})
        clients.ec2.describe_launch_templates.return_value = {"LaunchTemplates": []}
        clients.kms.describe_key.return_value = {"KeyMetadata": {"KeyId": "key-1"}}
        clients.logs.get_paginator.return_value = pages({"logGroups": []})
        clients.iam.get_role.side_effect = client_error("NoSuchEntity")
        clients.iam.list_open_id_connect_providers.return_value = {"OpenIDConnectProviderList": []}

        reconcile_orphans(ctx)

        clients.kms.delete_alias.assert_called_once_with(AliasName="alias/xperts-dev-eks")
        clients.kms.schedule_key_deletion.assert_called_once_with(KeyId="key-1", PendingWindowInDays=7)
