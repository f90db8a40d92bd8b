"""Teams Ops CLI.

Usage:
    teamsops validate sync.yaml                  # Check a spec file offline
    teamsops plan sync.yaml                      # Show what would change
    teamsops apply sync.yaml --report-csv out.csv
    teamsops list-teams --report-csv teams.csv       # Inventory, read-only
    teamsops list-channels TEAM_ID
    teamsops search-users alice
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import click

from .config import MAX_BATCH_CONCURRENCY, Config, ConfigurationError
from .graph_client import DEFAULT_SEARCH_TOP
from .inventory import InventoryKind
from .main import InventoryRequest, RunOptions, run_inventory, run_jobs, setup_logging
from .models import ChannelJob, TeamMembershipJob
from .spec_loader import SpecLoadError, load_jobs

SPEC_ARGUMENT = click.argument(
    "spec", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)


def report_options(func):
    """Add --report-csv and --report-json to a command."""
    func = click.option(
        "--report-json",
        type=click.Path(dir_okay=False, path_type=Path),
        help="Write totals and per-row details to this JSON file.",
    )(func)
    func = click.option(
        "--report-csv",
        type=click.Path(dir_okay=False, path_type=Path),
        help="Write one row per result to this CSV file.",
    )(func)
    return func


def load_config(concurrency: int | None = None) -> Config:
    """Load configuration from the environment, with CLI overrides."""
    try:
        config = Config.from_env()
        if concurrency is not None:
            # replace() re-runs validation
            config = dataclasses.replace(config, batch_concurrency=concurrency)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="teamsops")
@click.option("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...).")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Bulk Microsoft Teams administration through Microsoft Graph.

    \b
    Authentication:
        GRAPH_AUTH_MODE=managed_identity   (default, secretless)
        GRAPH_AUTH_MODE=client_secret      with GRAPH_TENANT_ID,
                                           GRAPH_CLIENT_ID, GRAPH_CLIENT_SECRET
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


def _init_logging(ctx: click.Context, config: Config) -> None:
    setup_logging(ctx.obj.get("log_level") or config.log_level)


@cli.command()
@SPEC_ARGUMENT
def validate(spec: Path) -> None:
    """Validate a sync spec without contacting Graph."""
    try:
        jobs = load_jobs(spec)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    for job in jobs:
        if isinstance(job, TeamMembershipJob):
            source = (
                f"group {job.source.group_id}"
                if job.source.group_id
                else f"{len(job.source.members)} listed member(s)"
            )
            detail = f"membership from {source}"
        elif isinstance(job, ChannelJob):
            detail = f"{len(job.channels)} channel(s)"
        else:
            detail = type(job).__name__
        removal = "removal allowed" if job.allow_removal else "add only"
        click.echo(f"{job.label}: {detail}, {removal}")

    click.secho(f"✓ {len(jobs)} job(s) valid", fg="green")


@cli.command()
@SPEC_ARGUMENT
@click.pass_context
def plan(ctx: click.Context, spec: Path) -> None:
    """Show the operations a sync would perform. Never writes."""
    config = load_config()
    _init_logging(ctx, config)
    code = asyncio.run(run_jobs(config, RunOptions(spec_path=spec), echo=click.echo))
    ctx.exit(code)


@cli.command()
@SPEC_ARGUMENT
@report_options
@click.option(
    "--concurrency",
    type=click.IntRange(1, MAX_BATCH_CONCURRENCY),
    default=None,
    help="Operations in flight at once (overrides BATCH_CONCURRENCY).",
)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def apply(
    ctx: click.Context,
    spec: Path,
    report_csv: Path | None,
    report_json: Path | None,
    concurrency: int | None,
    yes: bool,
) -> None:
    """Plan and apply a sync spec.

    Without --yes the plan is printed and confirmed first. Applying re-reads
    the tenant and runs the plan computed at that point.
    """
    config = load_config(concurrency)
    _init_logging(ctx, config)

    if config.dry_run:
        click.secho("DRY_RUN is set: changes will be planned but not applied", fg="yellow")
    elif not yes:
        code = asyncio.run(run_jobs(config, RunOptions(spec_path=spec), echo=click.echo))
        if code != 0:
            ctx.exit(code)
        click.confirm("Apply the changes planned above?", abort=True)

    options = RunOptions(
        spec_path=spec,
        apply=True,
        report_csv=report_csv,
        report_json=report_json,
    )
    code = asyncio.run(run_jobs(config, options, echo=click.echo))
    ctx.exit(code)


# =============================================================================
# Inventory Commands
# =============================================================================


def _list(ctx: click.Context, request: InventoryRequest) -> None:
    config = load_config()
    _init_logging(ctx, config)
    code = asyncio.run(run_inventory(config, request, echo=click.echo))
    ctx.exit(code)


@cli.command("list-teams")
@report_options
@click.pass_context
def list_teams(ctx: click.Context, report_csv: Path | None, report_json: Path | None) -> None:
    """List every team in the tenant."""
    _list(
        ctx,
        InventoryRequest(InventoryKind.TEAMS, report_csv=report_csv, report_json=report_json),
    )


@cli.command("list-channels")
@click.argument("team_id")
@report_options
@click.pass_context
def list_channels(
    ctx: click.Context, team_id: str, report_csv: Path | None, report_json: Path | None
) -> None:
    """List the channels of a team."""
    _list(
        ctx,
        InventoryRequest(
            InventoryKind.CHANNELS,
            team_id=team_id,
            report_csv=report_csv,
            report_json=report_json,
        ),
    )


@cli.command("search-users")
@click.argument("query")
@click.option(
    "--top",
    type=click.IntRange(1, 999),
    default=DEFAULT_SEARCH_TOP,
    show_default=True,
    help="Maximum number of users to return.",
)
@report_options
@click.pass_context
def search_users(
    ctx: click.Context,
    query: str,
    top: int,
    report_csv: Path | None,
    report_json: Path | None,
) -> None:
    """Find users whose name, mail or UPN starts with QUERY."""
    _list(
        ctx,
        InventoryRequest(
            InventoryKind.USERS,
            query=query,
            top=top,
            report_csv=report_csv,
            report_json=report_json,
        ),
    )


if __name__ == "__main__":
    cli()
