"""
windsc — CLI entrypoint.

Usage:
    windsc --help
    windsc status
    windsc config check
    windsc plan
    windsc apply
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from windsc import __version__
from windsc.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="windsc")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to windsc.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """windsc — reconcile Windows features on remote hosts over SSH."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("WINDSC_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("WINDSC_LOG_FILE"),
        log_file_level=os.environ.get("WINDSC_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show declared features and their stored bindings."""
    from windsc.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    if not ctx.obj.get("quiet", False):
        click.secho(f"\n📋 {result.config_path}", fg="cyan", bold=True)
        click.echo()

    click.secho(
        f"   Features: {len(result.features)} ({result.bound_count} bound)",
        fg="white",
        bold=True,
    )
    for row in result.features:
        if not row.bound:
            marker = click.style("○ not applied", fg="white")
        elif row.installed:
            marker = click.style(f"✓ {row.install_state}", fg="green")
        else:
            marker = click.style(f"✗ {row.install_state or 'unknown'}", fg="yellow")
        orphan = click.style(" (no longer declared)", fg="red") if row.orphaned else ""
        click.echo(f"     • {row.address} [{row.ensure}] {row.feature_name}@{row.host}  {marker}{orphan}")

    if result.state and result.state.last_operation.operation_id:
        op = result.state.last_operation
        click.echo()
        click.secho("   Last operation:", fg="white", bold=True)
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(
            op.status, "white"
        )
        click.echo(f"     {op.operation} — ", nl=False)
        click.secho(op.status, fg=status_color)
        if op.ended_at:
            click.echo(f"     at {op.ended_at}")

    if len(result.recent_operations) > 1:
        click.echo()
        click.secho("   Recent operations:", fg="white", bold=True)
        for entry in reversed(result.recent_operations):
            click.echo(
                f"     {entry.timestamp[:19]}  {entry.operation_type:<8} {entry.status:<8}"
                f" {entry.features_total - entry.features_failed}/{entry.features_total}"
            )

    click.echo()


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate windsc.yml without contacting any host."""
    from windsc.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Features: {len(result.config.features)}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


from windsc.ui.cli.feature import apply, destroy, plan, refresh  # noqa: E402

cli.add_command(apply)
cli.add_command(refresh)
cli.add_command(destroy)
cli.add_command(plan)


if __name__ == "__main__":
    cli()
