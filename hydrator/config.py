"""
Run configuration: resolution, derived names and the persisted key-value file.

Values come from the persisted file written by ``provision`` when it exists,
otherwise from the process environment, otherwise from built-in defaults.
"""

import logging
import os
import shlex
import tempfile
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1
DEFAULT_CONFIG_FILE = ".hydration-config"

DEFAULTS = {
    "PROJECT_NAME": "xperts",
    "ENVIRONMENT": "dev",
    "AWS_REGION": "ca-central-1",
    "GITHUB_ORG": "amerintlxperts",
    "GITHUB_REPO": "infrastructure-2026",
    "DESTROY_WORKFLOW": "terraform-destroy.yml",
}

# RunConfig field -> persisted key / environment variable
_KEYS = {
    "project_name": "PROJECT_NAME",
    "environment": "ENVIRONMENT",
    "region": "AWS_REGION",
    "github_org": "GITHUB_ORG",
    "github_repo": "GITHUB_REPO",
    "destroy_workflow": "DESTROY_WORKFLOW",
    "domain_name": "DOMAIN_NAME",
    "account_id": "AWS_ACCOUNT_ID",
    "state_bucket": "STATE_BUCKET",
    "lock_table": "LOCK_TABLE",
    "role_name": "OIDC_ROLE_NAME",
    "policy_name": "OIDC_POLICY_NAME",
    "state_key": "TF_STATE_KEY",
    "delegation_set_id": "DELEGATION_SET_ID",
    "deploy_key_id": "DEPLOY_KEY_ID",
}

_BASE_FIELDS = ("project_name", "environment", "region")
_DERIVED_FIELDS = ("state_bucket", "lock_table", "role_name", "policy_name", "state_key")


@dataclass(frozen=True)
class RunConfig:
    """Immutable parameters for a single invocation."""
    project_name: str
    environment: str
    region: str
    github_org: str
    github_repo: str
    state_bucket: str
    lock_table: str
    role_name: str
    policy_name: str
    state_key: str
    destroy_workflow: str = DEFAULTS["DESTROY_WORKFLOW"]
    domain_name: Optional[str] = None
    account_id: Optional[str] = None
    delegation_set_id: Optional[str] = None
    deploy_key_id: Optional[str] = None

    @property
    def cluster_name(self) -> str:
        return f"{self.project_name}-{self.environment}"

    @property
    def repo_slug(self) -> str:
        return f"{self.github_org}/{self.github_repo}"

    @property
    def appliance_name(self) -> str:
        """Name tag of the standalone FortiWeb instance."""
        return f"{self.cluster_name}-fortiweb"

    @property
    def network_name(self) -> str:
        return self.cluster_name

    @property
    def role_arn(self) -> str:
        return f"arn:aws:iam::{self.account_id}:role/{self.role_name}"

    @property
    def policy_arn(self) -> str:
        return f"arn:aws:iam::{self.account_id}:policy/{self.policy_name}"

    def secret_name(self, suffix: str) -> str:
        return f"{self.environment}/{suffix}"


def derive_names(project_name: str, environment: str, region: str) -> Dict[str, str]:
    """
    Compute the compound resource names for a project/environment/region.

    Args:
        project_name: Project identifier
        environment: Environment name (dev, prod, ...)
        region: AWS region

    Returns:
        Mapping of RunConfig field name to derived value
    """
    role_name = f"{project_name}-github-actions"
    return {
        "state_bucket": f"{project_name}-terraform-state-{region}",
        "lock_table": f"{project_name}-terraform-locks",
        "role_name": role_name,
        "policy_name": f"{role_name}-policy",
        "state_key": f"eks/{environment}/terraform.tfstate",
    }


def config_path(path: Optional[Path] = None) -> Path:
    """Location of the persisted configuration file."""
    if path is not None:
        return Path(path)
    return Path(os.environ.get("HYDRATOR_CONFIG", DEFAULT_CONFIG_FILE))


def read_config_file(path: Path) -> Dict[str, str]:
    """
    Parse a shell-compatible ``KEY=value`` file.

    Blank lines and ``#`` comments are ignored. Values may be shell-quoted;
    lines that cannot be parsed (e.g. unbalanced quotes) are skipped with a
    warning.
    """
    values: Dict[str, str] = {}
    for number, line in enumerate(path.read_text().splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, raw = line.split("=", 1)
        try:
            parsed = shlex.split(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unparsable line {number} in {path}: {e}")
            continue
        values[key.strip()] = parsed[0] if parsed else ""
    return values


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Optional[str]]] = None,
) -> RunConfig:
    """
    Resolve the RunConfig for this invocation.

    Args:
        path: Persisted file location (defaults to HYDRATOR_CONFIG or .hydration-config)
        environ: Environment mapping (defaults to os.environ)
        overrides: CLI overrides keyed by RunConfig field name; None values are ignored

    Returns:
        Fully populated RunConfig
    """
    environ = os.environ if environ is None else environ
    file_path = config_path(path)

    if file_path.exists():
        logger.info(f"Loading configuration from {file_path}...")
        source = read_config_file(file_path)
        version = source.get("CONFIG_VERSION")
        if version and version != str(CONFIG_VERSION):
            logger.warning(f"Configuration file version {version} differs from {CONFIG_VERSION}")

        def lookup(key: str) -> Optional[str]:
            # keys missing from older files still fall back to env/defaults
            return source.get(key) or environ.get(key) or DEFAULTS.get(key)
    else:
        logger.info(f"No {file_path.name} found, using defaults/environment variables")

        def lookup(key: str) -> Optional[str]:
            return environ.get(key) or DEFAULTS.get(key)

    values: Dict[str, Optional[str]] = {name: lookup(key) for name, key in _KEYS.items()}

    changed_base = False
    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in _KEYS:
            raise ValueError(f"Unknown configuration field: {name}")
        if name in _BASE_FIELDS and values.get(name) != value:
            changed_base = True
        values[name] = value

    derived = derive_names(values["project_name"], values["environment"], values["region"])
    for name in _DERIVED_FIELDS:
        if changed_base or not values.get(name):
            values[name] = derived[name]

    return RunConfig(**values)


def save_config(config: RunConfig, path: Optional[Path] = None) -> Path:
    """
    Persist the configuration atomically with owner-only permissions.

    Args:
        config: Configuration to write
        path: Destination (defaults to HYDRATOR_CONFIG or .hydration-config)

    Returns:
        Path written
    """
    file_path = config_path(path)
    data = asdict(config)

    lines = [
        "# Written by hydrator provision. Read by provision and teardown.",
        f"CONFIG_VERSION={CONFIG_VERSION}",
    ]
    for name, key in _KEYS.items():
        value = data.get(name)
        if value is None:
            continue
        lines.append(f"{key}={shlex.quote(str(value))}")

    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(file_path.parent), prefix=".hydration-", text=True)
    try:
        with os.fdopen(fd, "w") as f:
            f.write("\n".join(lines) + "\n")
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, file_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.debug(f"Saved configuration to {file_path}")
    return file_path


def remember(config: RunConfig, path: Optional[Path] = None, **identifiers: str) -> RunConfig:
    """Record generated identifiers and flush them to disk immediately."""
    known = {f.name for f in fields(RunConfig)}
    unknown = set(identifiers) - known
    if unknown:
        raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")
    updated = replace(config, **identifiers)
    save_config(updated, path)
    return updated


def remove_config(path: Optional[Path] = None) -> bool:
    """Delete the persisted file. Returns True when a file was removed."""
    file_path = config_path(path)
    if file_path.exists():
        file_path.unlink()
        return True
    return False
