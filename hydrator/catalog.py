"""
Named bootstrap artifacts shared by provisioning and teardown.
"""

import json
import secrets
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional, Tuple

from .config import RunConfig
from .errors import PreconditionError

DEPLOY_KEY_TITLE = "ArgoCD"
ARGOCD_SECRET = "argocd-repo-ssh"

GITHUB_OIDC_HOST = "token.actions.githubusercontent.com"
GITHUB_OIDC_AUDIENCE = "sts.amazonaws.com"
GITHUB_OIDC_THUMBPRINTS = [
    "6938fd4d98bab03faadb97b34396831e3780aea1",
    "1c58a3a8518e8759bf075b76b750d4f2df264fcd",
]

# Reused across destroy/recreate cycles so registrar nameservers stay valid
DELEGATION_SET_VARIABLE = "TF_VAR_DELEGATION_SET_ID"

# Secrets the operator may have set by hand in the repository
LEGACY_PIPELINE_SECRETS = (
    "AWS_ROLE_ARN",
    "AWS_REGION",
    "TF_STATE_BUCKET",
    "TF_STATE_KEY",
    "TF_LOCK_TABLE",
    "TF_VAR_admin_cidr",
    "TF_VAR_admin_role_arn",
    "TF_VAR_additional_cluster_admins",
    "TF_VAR_fortiflex_token",
    "TF_VAR_domain_name",
    "TF_VAR_acme_email",
)


def pipeline_variables(config: RunConfig) -> dict:
    """Actions variables the Terraform workflows read."""
    variables = {
        "AWS_ROLE_ARN": config.role_arn,
        "AWS_REGION": config.region,
        "TF_STATE_BUCKET": config.state_bucket,
        "TF_STATE_KEY": config.state_key,
        "TF_LOCK_TABLE": config.lock_table,
    }
    if config.delegation_set_id:
        variables[DELEGATION_SET_VARIABLE] = config.delegation_set_id
    return variables


def generate_ssh_keypair(comment: str) -> Tuple[str, str]:
    """
    Generate an ed25519 key pair with ssh-keygen.

    Returns:
        Tuple of (private_key, public_key)
    """
    if shutil.which("ssh-keygen") is None:
        raise PreconditionError("ssh-keygen is required to generate the ArgoCD deploy key.")

    with tempfile.TemporaryDirectory() as tmp:
        key_path = Path(tmp) / "id_ed25519"
        subprocess.run(
            ["ssh-keygen", "-t", "ed25519", "-N", "", "-C", comment, "-f", str(key_path), "-q"],
            check=True,
            capture_output=True,
            text=True,
        )
        private_key = key_path.read_text()
        public_key = key_path.with_name("id_ed25519.pub").read_text().strip()
    return private_key, public_key


def _fortiweb_admin(config: RunConfig, environ: Mapping[str, str]) -> Optional[str]:
    password = environ.get("FORTIWEB_ADMIN_PASSWORD") or secrets.token_urlsafe(24)
    return json.dumps({"username": "admin", "password": password})


def _argocd_ssh(config: RunConfig, environ: Mapping[str, str]) -> Optional[str]:
    private_key, public_key = generate_ssh_keypair(f"argocd@{config.cluster_name}")
    return json.dumps({"sshPrivateKey": private_key, "sshPublicKey": public_key})


def _ghcr_pull(config: RunConfig, environ: Mapping[str, str]) -> Optional[str]:
    username, token = environ.get("GHCR_USERNAME"), environ.get("GHCR_TOKEN")
    if not (username and token):
        return None
    return json.dumps({"username": username, "token": token})


def _from_env(key: str) -> Callable[[RunConfig, Mapping[str, str]], Optional[str]]:
    def source(config: RunConfig, environ: Mapping[str, str]) -> Optional[str]:
        return environ.get(key) or None
    return source


@dataclass(frozen=True)
class SecretSpec:
    """A Secrets Manager entry named ``<environment>/<suffix>``."""
    suffix: str
    description: str
    source: Callable[[RunConfig, Mapping[str, str]], Optional[str]]
    hint: str = ""


SECRET_SPECS = (
    SecretSpec("fortiweb", "FortiWeb admin credentials", _fortiweb_admin),
    SecretSpec(ARGOCD_SECRET, "ArgoCD repository SSH key", _argocd_ssh),
    SecretSpec("ghcr-pull-secret", "GHCR image pull credentials", _ghcr_pull,
               hint="set GHCR_USERNAME and GHCR_TOKEN"),
    SecretSpec("fortiweb-network", "FortiWeb network configuration", _from_env("FORTIWEB_NETWORK_CONFIG"),
               hint="set FORTIWEB_NETWORK_CONFIG"),
    SecretSpec("xperts-htpasswd", "Xperts basic auth htpasswd", _from_env("XPERTS_HTPASSWD"),
               hint="set XPERTS_HTPASSWD"),
)
