"""
Coordination of the remote terraform-destroy workflow.

At most one destroy run per repository is active at a time: an existing
queued or in-progress run is attached to instead of starting another.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .dns import clean_dns_records
from .errors import GitHubError, RemoteRunFailed, RunInterrupted
from .github import PENDING_STATUSES, Cancelled, GitHubClient, RemoteRun, RunStatus
from .phases import Context, DestroyOutcome
from .validate import surviving_infrastructure

logger = logging.getLogger(__name__)

DISCOVERY_ATTEMPTS = 12
DISCOVERY_INTERVAL = 5.0
DISCOVERY_PAGE_SIZE = 10
WATCH_INTERVAL = 15.0
# Tolerated difference between our clock and GitHub's
CLOCK_SKEW = timedelta(seconds=30)


def find_active_run(github: GitHubClient, workflow: str) -> Optional[RemoteRun]:
    """Return an in-progress run, else one still waiting to start, else None."""
    for status in ("in_progress",) + PENDING_STATUSES:
        runs = github.list_runs(workflow, status=status)
        if runs:
            return runs[0]
    return None


def trigger_destroy(ctx: Context) -> RemoteRun:
    """
    Dispatch the destroy workflow and wait until the new run is listable.

    Only a run that was not listed before the dispatch and has not finished
    yet is adopted.

    Raises:
        GitHubError: If the new run never shows up
    """
    config = ctx.config
    github = ctx.github
    workflow = config.destroy_workflow

    ref = github.default_branch()
    known = {run.id for run in github.list_runs(workflow, event="workflow_dispatch", per_page=DISCOVERY_PAGE_SIZE)}
    dispatched_at = datetime.now(timezone.utc) - CLOCK_SKEW
    logger.info(f"Triggering {workflow} workflow on {ref}...")
    github.dispatch_workflow(workflow, ref, {"environment": config.environment, "confirm": "destroy"})

    for attempt in range(1, DISCOVERY_ATTEMPTS + 1):
        ctx.sleep(DISCOVERY_INTERVAL)
        for run in github.list_runs(workflow, event="workflow_dispatch", per_page=DISCOVERY_PAGE_SIZE):
            if run.id in known or run.status.terminal:
                continue
            if run.created_at is None or run.created_at >= dispatched_at:
                return run
        logger.debug(f"Run not listed yet (attempt {attempt}/{DISCOVERY_ATTEMPTS})")

    raise GitHubError("Failed to get workflow run ID for the triggered destroy")


def attach(ctx: Context, run_id: int) -> DestroyOutcome:
    """
    Watch a run to completion and decide whether teardown may continue.

    Raises:
        RunInterrupted: The operator stopped watching; the run keeps going remotely
        RemoteRunFailed: The run failed and --force was not given
    """
    repo = ctx.config.repo_slug
    logger.info(f"Workflow Run ID: {run_id}")
    logger.info("Waiting for Terraform Destroy to complete (this may take 10-20 minutes)...")
    logger.info("Press Ctrl+C to stop watching (workflow will continue in background)")

    result = ctx.github.wait_for_run(run_id, poll_interval=WATCH_INTERVAL, sleep=ctx.sleep)
    if isinstance(result, Cancelled):
        raise RunInterrupted(result.run_id, repo)

    if result.run.status is RunStatus.SUCCEEDED:
        logger.info("Terraform Destroy completed successfully")
        return DestroyOutcome.SUCCEEDED

    logger.error(f"Terraform Destroy workflow failed! (conclusion: {result.run.conclusion})")
    if not ctx.flags.force:
        raise RemoteRunFailed(run_id, repo)

    logger.warning("--force specified, continuing anyway...")
    ctx.report.warnings.append(f"Destroy run {run_id} failed; continued because of --force")
    return DestroyOutcome.FAILED_FORCED


def remote_destroy(ctx: Context) -> DestroyOutcome:
    """Probe, pre-clean DNS, dedup or trigger, then attach."""
    present = surviving_infrastructure(ctx)
    if not present:
        logger.info("No infrastructure found (EKS, FortiWeb, and VPC don't exist)")
        logger.info("Skipping Terraform destroy - nothing to destroy")
        ctx.destroy_outcome = DestroyOutcome.NOTHING_TO_DESTROY
        return ctx.destroy_outcome

    logger.info("Found: " + ", ".join(present))
    clean_dns_records(ctx)

    run = find_active_run(ctx.github, ctx.config.destroy_workflow)
    if run is not None:
        logger.info(f"Destroy workflow already {run.status.value} (Run ID: {run.id})")
        logger.info("Watching existing workflow instead of starting a new one...")
    else:
        run = trigger_destroy(ctx)

    ctx.destroy_outcome = attach(ctx, run.id)
    if ctx.destroy_outcome is DestroyOutcome.SUCCEEDED:
        ctx.report.deleted.append(f"Terraform infrastructure (run {run.id})")
    return ctx.destroy_outcome
