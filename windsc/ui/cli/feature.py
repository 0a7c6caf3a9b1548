"""
CLI commands for feature reconciliation — apply, refresh, destroy, plan.

Thin wrappers over ``windsc.core.use_cases``. The channel opener can be
injected through ``ctx.obj["opener"]``; by default SSH is used.
"""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import click

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """First Ctrl-C cancels at the next phase boundary, the second aborts."""
    cancel = threading.Event()

    def _handler(signum: int, frame: object) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        click.secho(
            "\n   ⏹  Cancelling after the current step (Ctrl-C again to abort)",
            fg="yellow",
            err=True,
        )

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not in the main thread; plain KeyboardInterrupt semantics apply
        yield cancel
        return
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


def _render_operation(ctx: click.Context, result, title: str) -> None:
    """Print an OperationResult and exit non-zero on any failure."""
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    verbose = ctx.obj.get("verbose", False)

    click.secho(f"\n{title}", fg="cyan", bold=True)
    click.echo(f"   Operation: {result.operation_id}")
    click.echo()

    if not result.outcomes:
        click.echo("   Nothing to do.")

    for outcome in result.outcomes:
        target = f"{outcome.feature_name}@{outcome.host}" if outcome.host else outcome.feature_name
        label = f"{outcome.address} ({target})" if outcome.address != outcome.feature_name else target
        timing = f" ({outcome.duration_ms}ms)" if outcome.duration_ms else ""

        if outcome.ok:
            click.secho(f"   ✓ {label}", fg="green", nl=False)
            detail = f" {outcome.verb}"
            if outcome.applied:
                detail += f", {outcome.action}"
            elif outcome.verb != "read":
                detail += ", no change"
            if outcome.install_state:
                detail += f" → {outcome.install_state}"
            click.echo(f"{detail}{timing}")
        else:
            click.secho(f"   ✗ {label}", fg="red", nl=False)
            click.echo(f" {outcome.verb}{timing}")
            for line in outcome.error_message.split("\n")[:5]:
                click.echo(f"     │ {line}")

        for diag in outcome.diagnostics:
            if diag["severity"] == "warning":
                click.secho(f"     ⚠️  {diag['message']}", fg="yellow")
            elif verbose:
                click.echo(f"     · {diag['message']}")

    click.echo()
    click.secho(
        f"   Result: {result.succeeded}/{len(result.outcomes)} succeeded",
        fg=_STATUS_COLORS.get(result.status, "white"),
        bold=True,
    )
    click.echo()

    if result.failed > 0:
        sys.exit(1)


def _emit_json(result) -> None:
    click.echo(json.dumps(result.to_dict(), indent=2))
    if result.error or result.failed > 0:
        sys.exit(1)


# ── Apply ───────────────────────────────────────────────────────


@click.command("apply")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--feature", "-f", "features", multiple=True, help="Target specific features (by key).")
@click.pass_context
def apply(ctx: click.Context, as_json: bool, features: tuple[str, ...]) -> None:
    """Bring hosts to the state declared in windsc.yml.

    Examples:

        windsc apply

        windsc apply --feature web --feature mgmt
    """
    from windsc.core.use_cases.reconcile import apply_features

    with _cancel_on_interrupt() as cancel:
        result = apply_features(
            config_path=ctx.obj.get("config_path"),
            features=list(features) or None,
            opener=ctx.obj.get("opener"),
            cancel=cancel,
        )

    if as_json:
        _emit_json(result)
        return
    _render_operation(ctx, result, "⚡ Apply")


# ── Refresh ─────────────────────────────────────────────────────


@click.command("refresh")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--feature", "-f", "features", multiple=True, help="Target specific features (by key).")
@click.pass_context
def refresh(ctx: click.Context, as_json: bool, features: tuple[str, ...]) -> None:
    """Read current host state into .state/ without changing anything."""
    from windsc.core.use_cases.reconcile import refresh_features

    with _cancel_on_interrupt() as cancel:
        result = refresh_features(
            config_path=ctx.obj.get("config_path"),
            features=list(features) or None,
            opener=ctx.obj.get("opener"),
            cancel=cancel,
        )

    if as_json:
        _emit_json(result)
        return
    _render_operation(ctx, result, "🔄 Refresh")


# ── Destroy ─────────────────────────────────────────────────────


@click.command("destroy")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--feature", "-f", "features", multiple=True, help="Target specific features (by key).")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation.")
@click.pass_context
def destroy(ctx: click.Context, as_json: bool, features: tuple[str, ...], yes: bool) -> None:
    """Remove bound features from their hosts."""
    from windsc.core.use_cases.reconcile import destroy_features

    if not yes and not as_json:
        target = ", ".join(features) if features else "all bound features"
        click.confirm(f"Remove {target}?", abort=True)

    with _cancel_on_interrupt() as cancel:
        result = destroy_features(
            config_path=ctx.obj.get("config_path"),
            features=list(features) or None,
            opener=ctx.obj.get("opener"),
            cancel=cancel,
        )

    if as_json:
        _emit_json(result)
        return
    _render_operation(ctx, result, "🗑️  Destroy")


# ── Plan ────────────────────────────────────────────────────────


@click.command("plan")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--feature", "-f", "features", multiple=True, help="Target specific features (by key).")
@click.option("--show-script", is_flag=True, help="Print the compiled DSC script.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool, features: tuple[str, ...], show_script: bool) -> None:
    """Compile declarations and show what apply would do. Never connects."""
    from windsc.core.use_cases.plan import plan_features

    result = plan_features(
        config_path=ctx.obj.get("config_path"),
        features=list(features) or None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(include_script=show_script), indent=2))
        if not result.valid:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.secho("\n📋 Plan", fg="cyan", bold=True)
    click.echo()

    verb_colors = {"create": "green", "update": "cyan", "replace": "yellow", "delete": "red"}
    for planned in result.features:
        click.secho(f"   {planned.verb:<8}", fg=verb_colors.get(planned.verb, "white"), nl=False)
        click.echo(f" {planned.address}  → {planned.identity}")
        if planned.verb == "replace":
            click.echo(f"            (was {planned.bound_identity})")
        if planned.error:
            click.secho(f"     ❌ {planned.error}", fg="red")
        elif planned.payload is not None:
            click.echo(f"     digest {planned.payload.digest[:12]}")
            if show_script:
                for line in planned.payload.script.splitlines():
                    click.echo(f"     │ {line}")

    click.echo()
    if not result.valid:
        sys.exit(1)
