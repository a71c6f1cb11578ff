"""
Tests for the teardown phase list: ordering, skip flags and abort behavior.
"""

import pytest

from hydrator.config import save_config
from hydrator.errors import RunInterrupted, ValidationFailed
from hydrator.github import Cancelled, Completed, RemoteRun, RunStatus
from hydrator.phases import Flags, Phase, run_phases
from hydrator.teardown import TEARDOWN_PHASES, remove_local_artifacts


def _active_destroy(ctx, result):
    ctx.clients.ec2.describe_instances.return_value = {"Reservations": []}
    ctx.clients.ec2.describe_vpcs.return_value = {"Vpcs": []}
    ctx.github.list_runs.side_effect = lambda workflow, status=None, **kw: (
        [RemoteRun(id=321, status=RunStatus.IN_PROGRESS)] if status == "in_progress" else []
    )
    ctx.github.wait_for_run.return_value = result


def _assert_nothing_swept(ctx):
    clients = ctx.clients
    clients.eks.delete_cluster.assert_not_called()
    clients.s3.delete_bucket.assert_not_called()
    clients.dynamodb.delete_table.assert_not_called()
    clients.iam.delete_role.assert_not_called()
    clients.secretsmanager.delete_secret.assert_not_called()
    ctx.github.list_deploy_keys.assert_not_called()
    ctx.github.delete_deploy_key.assert_not_called()
    ctx.github.delete_variable.assert_not_called()


class TestAbortOrdering:
    """Test aborting failures stop every later phase."""

    def test_validation_failure_stops_before_orphans(self, ctx):
        """Test a surviving cluster after a successful run aborts the teardown."""
        _active_destroy(ctx, Completed(RemoteRun(id=321, status=RunStatus.SUCCEEDED, conclusion="success")))

        with pytest.raises(ValidationFailed):
            run_phases(TEARDOWN_PHASES, ctx)

        _assert_nothing_swept(ctx)

    def test_interrupt_never_reaches_sweeper(self, ctx):
        """Test an interrupted wait performs no credential cleanup."""
        _active_destroy(ctx, Cancelled(321))

        with pytest.raises(RunInterrupted) as excinfo:
            run_phases(TEARDOWN_PHASES, ctx)

        assert excinfo.value.run_id == 321
        _assert_nothing_swept(ctx)


class TestSkipFlags:
    """Test declarative skip rules."""

    def test_skip_reason(self):
        phase = Phase("x", lambda ctx: None, frozenset({"bootstrap_only", "skip_remote_destroy"}))

        assert phase.skip_reason(Flags()) is None
        assert phase.skip_reason(Flags(skip_remote_destroy=True)) == "--skip-remote-destroy"

    def test_bootstrap_only_keeps_infrastructure(self, make_ctx):
        """Test --bootstrap-only touches neither infrastructure nor the state store."""
        ctx = make_ctx(flags=Flags(bootstrap_only=True))
        env_dir = ctx.workdir / "terraform" / "environments" / "dev"
        (env_dir / ".terraform").mkdir(parents=True)
        (env_dir / "backend.tf").write_text("terraform {}\n")
        save_config(ctx.config, ctx.config_file)

        run_phases(TEARDOWN_PHASES, ctx)

        ctx.github.list_runs.assert_not_called()
        ctx.github.dispatch_workflow.assert_not_called()
        ctx.clients.eks.delete_cluster.assert_not_called()
        ctx.clients.s3.delete_bucket.assert_not_called()
        ctx.clients.dynamodb.delete_table.assert_not_called()
        assert len(ctx.report.skipped) == 5

        ctx.clients.iam.delete_role.assert_called_once_with(RoleName="xperts-github-actions")
        assert ctx.clients.secretsmanager.delete_secret.call_count == 5
        assert not (env_dir / "backend.tf").exists()
        assert not (env_dir / ".terraform").exists()
        assert ctx.config_file.exists()

    def test_skip_remote_destroy_runs_orphans(self, make_ctx):
        """Test --skip-remote-destroy goes straight to orphan cleanup."""
        ctx = make_ctx(flags=Flags(skip_remote_destroy=True))

        run_phases(TEARDOWN_PHASES, ctx)

        ctx.github.dispatch_workflow.assert_not_called()
        ctx.clients.eks.delete_cluster.assert_called_once_with(name="xperts-dev")
        assert len(ctx.report.skipped) == 2


class TestLocalArtifacts:

    def test_full_teardown_removes_config(self, ctx):
        save_config(ctx.config, ctx.config_file)

        removed = remove_local_artifacts(ctx)

        assert "configuration file" in removed
        assert not ctx.config_file.exists()
