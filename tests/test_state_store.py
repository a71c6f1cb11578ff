"""
Tests for the shared-state guard and state bucket removal.
"""

from unittest.mock import Mock

import pytest

from hydrator.errors import SharedStateConflict
from hydrator.phases import Flags
from hydrator.state_store import delete_lock_table, delete_state_bucket, empty_bucket

from conftest import client_error, pages


def _bucket(ctx, keys, versions=None, markers=None):
    s3 = ctx.clients.s3
    listings = {
        "list_objects_v2": pages({"Contents": [{"Key": key} for key in keys]}),
        "list_object_versions": pages({
            "Versions": versions or [],
            "DeleteMarkers": markers or [],
        }),
    }
    s3.get_paginator.side_effect = lambda name: listings[name]
    s3.delete_objects.return_value = {}
    return s3


class TestSharedStateGuard:
    """Test refusal to delete a bucket other projects still use."""

    def test_conflict_aborts_before_any_delete(self, ctx):
        """Test a foreign state key aborts and is reported."""
        own = ctx.config.state_key
        s3 = _bucket(ctx, [own, "eks/other/terraform.tfstate", "notes.txt"])

        with pytest.raises(SharedStateConflict) as excinfo:
            delete_state_bucket(ctx)

        assert excinfo.value.keys == ["eks/other/terraform.tfstate"]
        assert "eks/other/terraform.tfstate" in str(excinfo.value)
        s3.delete_objects.assert_not_called()
        s3.delete_bucket.assert_not_called()

    def test_only_own_state(self, ctx):
        """Test the bucket is emptied and deleted when only our state remains."""
        s3 = _bucket(
            ctx,
            [ctx.config.state_key],
            versions=[{"Key": ctx.config.state_key, "VersionId": "v1"}],
            markers=[{"Key": ctx.config.state_key, "VersionId": "m1"}],
        )

        delete_state_bucket(ctx)

        objects = s3.delete_objects.call_args.kwargs["Delete"]["Objects"]
        assert objects == [
            {"Key": ctx.config.state_key, "VersionId": "v1"},
            {"Key": ctx.config.state_key, "VersionId": "m1"},
        ]
        s3.delete_bucket.assert_called_once_with(Bucket=ctx.config.state_bucket)

    def test_force_deletes_despite_conflict(self, make_ctx):
        ctx = make_ctx(flags=Flags(force=True))
        s3 = _bucket(
            ctx,
            ["eks/other/terraform.tfstate"],
            versions=[{"Key": "eks/other/terraform.tfstate", "VersionId": "v9"}],
        )

        delete_state_bucket(ctx)

        s3.delete_bucket.assert_called_once()
        assert ctx.report.warnings

    def test_missing_bucket_skipped(self, ctx):
        ctx.clients.s3.head_bucket.side_effect = client_error("404")

        delete_state_bucket(ctx)

        ctx.clients.s3.delete_bucket.assert_not_called()


class TestEmptyBucket:
    """Test version removal batching."""

    def test_batches_of_one_thousand(self):
        s3 = Mock()
        versions = [{"Key": f"k{i}", "VersionId": str(i)} for i in range(1500)]
        s3.get_paginator.return_value = pages({"Versions": versions})
        s3.delete_objects.return_value = {}

        assert empty_bucket(s3, "bucket") == 1500
        sizes = [len(c.kwargs["Delete"]["Objects"]) for c in s3.delete_objects.call_args_list]
        assert sizes == [1000, 500]


class TestLockTable:

    def test_deleted_when_present(self, ctx):
        delete_lock_table(ctx)
        ctx.clients.dynamodb.delete_table.assert_called_once_with(TableName=ctx.config.lock_table)

    def test_missing_table_skipped(self, ctx):
        ctx.clients.dynamodb.describe_table.side_effect = client_error("ResourceNotFoundException")

        delete_lock_table(ctx)

        ctx.clients.dynamodb.delete_table.assert_not_called()
