"""
Post-destroy validation against the live account.

A successful workflow run is advisory. The major resources are re-probed by
name and any survivor fails the teardown unless forced.
"""

import logging
from typing import Callable, List, NamedTuple

from .config import RunConfig
from .errors import ValidationFailed
from .phases import Context, DestroyOutcome
from .probe import Match, ResourceKind, probe

logger = logging.getLogger(__name__)


class InfraCheck(NamedTuple):
    label: str
    kind: ResourceKind
    match: Callable[[RunConfig], Match]


INFRA_CHECKS = (
    InfraCheck("EKS cluster", ResourceKind.EKS_CLUSTER, lambda c: Match.named(c.cluster_name)),
    InfraCheck("FortiWeb instance", ResourceKind.EC2_INSTANCE, lambda c: Match.tagged("Name", c.appliance_name)),
    InfraCheck("VPC", ResourceKind.VPC, lambda c: Match.tagged("Name", c.network_name)),
)


def surviving_infrastructure(ctx: Context) -> List[str]:
    """
    Probe every major resource the destroy workflow is responsible for.

    Probe failures propagate; a wrong answer here could delete credentials
    for infrastructure that still exists.

    Returns:
        Human-readable descriptions of resources that still exist
    """
    remaining = []
    for check in INFRA_CHECKS:
        found = probe(ctx.clients, check.kind, check.match(ctx.config))
        if found:
            remaining.extend(f"{check.label} {identifier}" for identifier in found)
        else:
            logger.info(f"  ✓ {check.label} not present")
    return remaining


def validate_destroyed(ctx: Context) -> None:
    if ctx.destroy_outcome is not DestroyOutcome.SUCCEEDED:
        logger.info("No completed destroy run to validate, skipping")
        return

    logger.info("Validating infrastructure is destroyed...")
    remaining = surviving_infrastructure(ctx)
    if not remaining:
        logger.info("Infrastructure destroyed")
        return

    for resource in remaining:
        logger.error(f"{resource} still exists!")
    if not ctx.flags.force:
        raise ValidationFailed(remaining)

    logger.warning("--force specified, continuing anyway...")
    ctx.report.warnings.append("Validation failed, still present: " + ", ".join(remaining))
