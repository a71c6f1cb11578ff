"""
Shared fixtures: a resolved RunConfig, mocked AWS clients and a mocked
GitHub client wired into a phase Context.
"""

from unittest.mock import MagicMock, Mock

import pytest
from botocore.exceptions import ClientError

from hydrator.config import load_config
from hydrator.github import GitHubClient
from hydrator.phases import Context, Flags

ACCOUNT_ID = "123456789012"


def client_error(code, operation="Operation"):
    """Build a real botocore ClientError with the given code."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def pages(*items):
    """A paginator mock whose paginate() yields the given pages."""
    paginator = Mock()
    paginator.paginate.return_value = list(items)
    return paginator


@pytest.fixture
def config(tmp_path):
    return load_config(tmp_path / "missing-config", environ={"AWS_ACCOUNT_ID": ACCOUNT_ID})


@pytest.fixture
def github():
    client = Mock(spec=GitHubClient)
    client.list_deploy_keys.return_value = []
    client.list_runs.return_value = []
    return client


@pytest.fixture
def make_ctx(config, github, tmp_path):
    """Factory for a Context with mocked collaborators."""
    def factory(**kwargs):
        values = {
            "config": config,
            "clients": MagicMock(),
            "github": github,
            "flags": Flags(),
            "config_file": tmp_path / ".hydration-config",
            "workdir": tmp_path,
            "confirm": Mock(return_value=False),
            "sleep": Mock(),
        }
        values.update(kwargs)
        return Context(**values)
    return factory


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()
