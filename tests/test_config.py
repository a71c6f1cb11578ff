"""
Tests for configuration resolution and the persisted key-value file.
"""

import logging
import stat

import pytest

from hydrator.config import (
    CONFIG_VERSION,
    load_config,
    read_config_file,
    remember,
    remove_config,
    save_config,
)


class TestLoadConfig:
    """Test source precedence and derived names."""

    def test_defaults(self, tmp_path):
        """Test defaults when neither file nor environment provide values."""
        config = load_config(tmp_path / "absent", environ={})

        assert config.project_name == "xperts"
        assert config.environment == "dev"
        assert config.region == "ca-central-1"
        assert config.state_bucket == "xperts-terraform-state-ca-central-1"
        assert config.lock_table == "xperts-terraform-locks"
        assert config.role_name == "xperts-github-actions"
        assert config.policy_name == "xperts-github-actions-policy"
        assert config.state_key == "eks/dev/terraform.tfstate"
        assert config.cluster_name == "xperts-dev"
        assert config.appliance_name == "xperts-dev-fortiweb"
        assert config.repo_slug == "amerintlxperts/infrastructure-2026"
        assert config.domain_name is None

    def test_environment_variables(self, tmp_path):
        """Test environment values feed derived names."""
        environ = {"PROJECT_NAME": "acme", "ENVIRONMENT": "prod", "AWS_REGION": "us-east-1"}
        config = load_config(tmp_path / "absent", environ=environ)

        assert config.state_bucket == "acme-terraform-state-us-east-1"
        assert config.state_key == "eks/prod/terraform.tfstate"
        assert config.cluster_name == "acme-prod"

    def test_file_wins_over_environment(self, tmp_path):
        """Test the persisted file takes precedence over the environment."""
        path = tmp_path / ".hydration-config"
        path.write_text("PROJECT_NAME=acme\nDOMAIN_NAME=example.com\n")

        config = load_config(path, environ={"PROJECT_NAME": "other", "GITHUB_ORG": "someorg"})

        assert config.project_name == "acme"
        assert config.domain_name == "example.com"
        # keys absent from the file still fall back
        assert config.github_org == "someorg"

    def test_override_recomputes_derived_names(self, tmp_path):
        """Test CLI overrides beat the file and rederive compound names."""
        path = tmp_path / ".hydration-config"
        save_config(load_config(tmp_path / "absent", environ={"PROJECT_NAME": "acme"}), path)

        config = load_config(path, environ={}, overrides={"project_name": "beta", "region": None})

        assert config.project_name == "beta"
        assert config.region == "ca-central-1"
        assert config.state_bucket == "beta-terraform-state-ca-central-1"
        assert config.lock_table == "beta-terraform-locks"
        assert config.role_name == "beta-github-actions"

    def test_unknown_override(self, tmp_path):
        """Test unknown override fields are rejected."""
        with pytest.raises(ValueError, match="Unknown configuration field"):
            load_config(tmp_path / "absent", environ={}, overrides={"colour": "blue"})


class TestConfigFile:
    """Test writing, reading and removing the configuration file."""

    def test_save_and_load(self, tmp_path):
        """Test a saved configuration loads back unchanged."""
        path = tmp_path / ".hydration-config"
        config = load_config(tmp_path / "absent", environ={"AWS_ACCOUNT_ID": "123456789012"})

        save_config(config, path)

        assert load_config(path, environ={}) == config
        assert f"CONFIG_VERSION={CONFIG_VERSION}" in path.read_text()

    def test_owner_only_permissions(self, tmp_path):
        """Test the file is written with mode 0600."""
        path = tmp_path / ".hydration-config"
        save_config(load_config(tmp_path / "absent", environ={}), path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_remember_flushes_immediately(self, tmp_path):
        """Test remembered identifiers reach the disk at once."""
        path = tmp_path / ".hydration-config"
        config = load_config(tmp_path / "absent", environ={})

        updated = remember(config, path, deploy_key_id="42")

        assert updated.deploy_key_id == "42"
        assert config.deploy_key_id is None
        assert read_config_file(path)["DEPLOY_KEY_ID"] == "42"

    def test_remember_unknown_field(self, tmp_path):
        """Test remember rejects fields RunConfig does not have."""
        config = load_config(tmp_path / "absent", environ={})
        with pytest.raises(ValueError):
            remember(config, tmp_path / "cfg", nonsense="1")

    def test_read_shell_syntax(self, tmp_path):
        """Test quoted values, export prefixes and comments."""
        path = tmp_path / "cfg"
        path.write_text("# comment\n\nexport DOMAIN_NAME='example.com'\nGITHUB_REPO=\"infra repo\"\n")

        values = read_config_file(path)

        assert values == {"DOMAIN_NAME": "example.com", "GITHUB_REPO": "infra repo"}

    def test_unbalanced_quotes_skipped(self, tmp_path, caplog):
        """Test a malformed line is skipped with a warning naming it."""
        path = tmp_path / "cfg"
        path.write_text("PROJECT_NAME=acme\nDOMAIN_NAME='example.com\nENVIRONMENT=prod\n")

        with caplog.at_level(logging.WARNING, logger="hydrator"):
            values = read_config_file(path)

        assert values == {"PROJECT_NAME": "acme", "ENVIRONMENT": "prod"}
        assert "line 2" in caplog.text

        config = load_config(path, environ={})
        assert config.domain_name is None
        assert config.cluster_name == "acme-prod"

    def test_remove_config(self, tmp_path):
        """Test removal reports whether a file existed."""
        path = tmp_path / ".hydration-config"
        path.write_text("PROJECT_NAME=acme\n")

        assert remove_config(path) is True
        assert not path.exists()
        assert remove_config(path) is False
