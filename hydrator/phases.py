"""
Declarative phase lists shared by provision and teardown.

Each phase names the CLI flags that skip it, so skip rules live in data
instead of being scattered through the control flow.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from enum import Enum
from typing import Any, Callable, FrozenSet, List, Optional, Sequence

import click

from .aws import AwsClients, caller_account_id
from .config import RunConfig
from .github import GitHubClient

logger = logging.getLogger(__name__)


class DestroyOutcome(Enum):
    """How the remote destroy phase ended."""
    NOTHING_TO_DESTROY = "nothing-to-destroy"
    SUCCEEDED = "succeeded"
    FAILED_FORCED = "failed-forced"


@dataclass(frozen=True)
class Flags:
    """Teardown switches from the command line."""
    force: bool = False
    bootstrap_only: bool = False
    skip_remote_destroy: bool = False

    def is_set(self, name: str) -> bool:
        return bool(getattr(self, name))


@dataclass
class Report:
    """What a run did, for the closing summary."""
    created: List[str] = field(default_factory=list)
    existing: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    preserved: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def render(self, title: str) -> str:
        sections = [
            ("Created", self.created),
            ("Already present", self.existing),
            ("Deleted", self.deleted),
            ("Preserved", self.preserved),
            ("Skipped phases", self.skipped),
            ("Warnings", self.warnings),
        ]
        lines = ["", "=" * 42, title, "=" * 42]
        for heading, items in sections:
            if not items:
                continue
            lines.append(f"{heading}:")
            lines.extend(f"  - {item}" for item in items)
        if len(lines) == 4:
            lines.append("Nothing to report.")
        return "\n".join(lines)


@dataclass
class Context:
    """Mutable state threaded through every phase of one invocation."""
    config: RunConfig
    clients: AwsClients
    github: Optional[GitHubClient] = None
    flags: Flags = field(default_factory=Flags)
    report: Report = field(default_factory=Report)
    config_file: Optional[Path] = None
    workdir: Path = field(default_factory=Path.cwd)
    confirm: Callable[[str], bool] = lambda prompt: click.confirm(prompt, default=False)
    sleep: Callable[[float], None] = time.sleep
    destroy_outcome: Optional[DestroyOutcome] = None


@dataclass(frozen=True)
class Phase:
    """One named step and the flags that turn it off."""
    name: str
    action: Callable[[Context], Any]
    skip_flags: FrozenSet[str] = frozenset()

    def skip_reason(self, flags: Flags) -> Optional[str]:
        for flag in sorted(self.skip_flags):
            if flags.is_set(flag):
                return "--" + flag.replace("_", "-")
        return None


def run_phases(phases: Sequence[Phase], ctx: Context) -> None:
    """
    Execute phases in order, honoring their skip flags.

    Exceptions from a phase propagate and stop the run; later phases never
    execute after an aborting failure.
    """
    total = len(phases)
    for index, phase in enumerate(phases, 1):
        reason = phase.skip_reason(ctx.flags)
        if reason:
            logger.info(f"Step {index}/{total}: Skipping {phase.name} ({reason})")
            ctx.report.skipped.append(f"{phase.name} ({reason})")
            continue
        logger.info(f"Step {index}/{total}: {phase.name}")
        phase.action(ctx)


def preflight(ctx: Context) -> None:
    """
    Check AWS and GitHub credentials before anything is touched.

    Raises:
        PreconditionError: If either set of credentials is unavailable
    """
    account_id = caller_account_id(ctx.clients)
    if ctx.config.account_id != account_id:
        ctx.config = replace(ctx.config, account_id=account_id)
    logger.info(f"AWS Account: {account_id}")
    logger.info(f"Region: {ctx.config.region}")
    if ctx.github is None:
        ctx.github = GitHubClient.from_environment(ctx.config.repo_slug)
    logger.info(f"Repository: {ctx.config.repo_slug}")
