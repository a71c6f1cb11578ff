"""Command line entrypoint for Hydrator."""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from botocore.exceptions import BotoCoreError, ClientError

from . import __version__
from .aws import AwsClients
from .config import RunConfig, config_path, load_config
from .errors import ConfirmationDeclined, HydratorError
from .logs import setup_logging
from .phases import Context, Flags, preflight, run_phases
from .provision import PROVISION_PHASES
from .teardown import TEARDOWN_PHASES

logger = logging.getLogger(__name__)

CONFIRMATION_PHRASE = "destroy"


def override_options(func):
    """Project, environment and region overrides, accepted before or after the subcommand."""
    func = click.option("--region", help="AWS region override")(func)
    func = click.option("--environment", help="Environment override (dev, prod, ...)")(func)
    func = click.option("--project", help="Project name override")(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="hydrator")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_file", type=click.Path(dir_okay=False, path_type=Path),
              help="Configuration file (default: .hydration-config or $HYDRATOR_CONFIG)")
@override_options
@click.pass_context
def main(ctx, verbose, config_file, project, environment, region):
    """Hydrator - bootstrap and teardown for the EKS platform."""
    setup_logging(verbose=verbose, color=sys.stderr.isatty())
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_path(config_file)
    ctx.obj["overrides"] = {"project_name": project, "environment": environment, "region": region}


def _build_context(obj: dict, flags: Optional[Flags] = None, **overrides: Optional[str]) -> Context:
    merged = dict(obj["overrides"])
    merged.update({name: value for name, value in overrides.items() if value is not None})
    config = load_config(obj["config_file"], overrides=merged)
    return Context(
        config=config,
        clients=AwsClients(config.region),
        flags=flags or Flags(),
        config_file=obj["config_file"],
    )


def _fail(error: Exception, exit_code: int = 1) -> None:
    logger.error(str(error))
    sys.exit(exit_code)


def _show_targets(config: RunConfig, flags: Flags) -> None:
    click.echo(click.style("WARNING: This will delete:", fg="red", bold=True))
    if not flags.bootstrap_only and not flags.skip_remote_destroy:
        click.echo(f"  - EKS cluster {config.cluster_name} and all infrastructure (via GitHub Actions)")
    if not flags.bootstrap_only:
        click.echo(f"  - S3 bucket: {config.state_bucket} (and all Terraform state)")
        click.echo(f"  - DynamoDB table: {config.lock_table}")
    click.echo(f"  - IAM role: {config.role_name}")
    click.echo("  - GitHub OIDC provider (if not used by other repos)")
    click.echo(f"  - Secrets Manager secrets under {config.environment}/")
    click.echo("  - ArgoCD deploy key and repository pipeline variables")


def confirm_teardown(config: RunConfig, flags: Flags) -> None:
    """
    Ask the operator to type the confirmation phrase.

    Raises:
        ConfirmationDeclined: On any answer other than the exact phrase
    """
    if flags.force:
        return

    _show_targets(config, flags)
    answer = click.prompt(f"Type '{CONFIRMATION_PHRASE}' to confirm", default="", show_default=False)
    if answer.strip() != CONFIRMATION_PHRASE:
        raise ConfirmationDeclined("Aborted.")

    if flags.skip_remote_destroy:
        click.echo(click.style(
            "WARNING: --skip-remote-destroy will NOT destroy EKS infrastructure. "
            "Resources may keep running and incur costs.", fg="yellow"))
        if not click.confirm("Are you sure you want to skip terraform destroy?", default=False):
            raise ConfirmationDeclined("Aborted.")


@main.command()
@override_options
@click.pass_context
def provision(ctx, project, environment, region):
    """Create the bootstrap resources the Terraform pipeline needs."""
    try:
        run = _build_context(ctx.obj, project_name=project, environment=environment, region=region)
        preflight(run)
        run_phases(PROVISION_PHASES, run)
        click.echo(run.report.render("Bootstrap Complete"))
    except HydratorError as e:
        _fail(e, e.exit_code)
    except (ClientError, BotoCoreError) as e:
        _fail(e)
    except KeyboardInterrupt:
        _fail(HydratorError("Interrupted."), 130)


@main.command()
@click.option("--force", is_flag=True, help="Skip confirmations and continue past failures")
@click.option("--bootstrap-only", is_flag=True, help="Only remove bootstrap credentials, keep infrastructure")
@click.option("--skip-remote-destroy", is_flag=True, help="Skip the Terraform destroy workflow (dangerous)")
@override_options
@click.pass_context
def teardown(ctx, force, bootstrap_only, skip_remote_destroy, project, environment, region):
    """Destroy the environment and remove its bootstrap resources."""
    flags = Flags(force=force, bootstrap_only=bootstrap_only, skip_remote_destroy=skip_remote_destroy)
    try:
        run = _build_context(ctx.obj, flags, project_name=project, environment=environment, region=region)
        preflight(run)
        confirm_teardown(run.config, flags)
        run_phases(TEARDOWN_PHASES, run)
        title = "Bootstrap Cleanup Complete" if bootstrap_only else "Cleanup Complete"
        click.echo(run.report.render(title))
    except HydratorError as e:
        _fail(e, e.exit_code)
    except (ClientError, BotoCoreError) as e:
        _fail(e)
    except KeyboardInterrupt:
        _fail(HydratorError("Interrupted."), 130)


if __name__ == "__main__":
    main()
