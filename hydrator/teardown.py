"""
Teardown: the ordered phase list that removes an environment and its bootstrap.

Credential removal always comes after the remote destroy has finished, so
secrets are never deleted while infrastructure that reads them is running.
"""

import logging
import shutil
from typing import List

from .config import remove_config
from .orphans import reconcile_orphans
from .phases import Context, Phase
from .remote import remote_destroy
from .state_store import delete_lock_table, delete_state_bucket
from .sweep import (
    delete_deploy_key,
    delete_github_oidc_provider,
    delete_pipeline_config,
    delete_pipeline_role,
    delete_secrets,
    keep_delegation_set,
)
from .validate import validate_destroyed

logger = logging.getLogger(__name__)

LOCAL_ARTIFACTS = ("backend.tf", ".terraform", "terraform.tfstate", "terraform.tfstate.backup", "tfplan")

INFRASTRUCTURE = frozenset({"bootstrap_only", "skip_remote_destroy"})
STATE_STORE = frozenset({"bootstrap_only"})


def remove_local_artifacts(ctx: Context) -> List[str]:
    """
    Delete generated Terraform files and, on a full teardown, the config file.

    Returns:
        Paths that were removed
    """
    env_dir = ctx.workdir / "terraform" / "environments" / ctx.config.environment
    removed = []
    for name in LOCAL_ARTIFACTS:
        path = env_dir / name
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        else:
            continue
        logger.info(f"Removed {path}")
        removed.append(str(path))

    if ctx.flags.bootstrap_only:
        logger.info("Keeping configuration file (--bootstrap-only)")
    elif remove_config(ctx.config_file):
        logger.info("Removed configuration file")
        removed.append("configuration file")

    ctx.report.deleted.extend(f"Local: {path}" for path in removed)
    return removed


TEARDOWN_PHASES = (
    Phase("Terraform destroy via GitHub Actions", remote_destroy, INFRASTRUCTURE),
    Phase("Validate infrastructure destroyed", validate_destroyed, INFRASTRUCTURE),
    Phase("Orphaned AWS resources", reconcile_orphans, STATE_STORE),
    Phase("Terraform state bucket", delete_state_bucket, STATE_STORE),
    Phase("Terraform lock table", delete_lock_table, STATE_STORE),
    Phase("Pipeline IAM role and policy", delete_pipeline_role),
    Phase("GitHub OIDC provider", delete_github_oidc_provider),
    Phase("Route53 delegation set", keep_delegation_set),
    Phase("Application secrets", delete_secrets),
    Phase("ArgoCD deploy key", delete_deploy_key),
    Phase("Pipeline configuration", delete_pipeline_config),
    Phase("Local files", remove_local_artifacts),
)
