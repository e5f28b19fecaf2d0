"""Command-line entry points: pre-push check, scoped run, release, status."""

import subprocess
import sys
from pathlib import Path

import click
import structlog
from pydantic import ValidationError

from src.coordination.exceptions import LeaseStoreError
from src.coordination.models import LeaseScope
from src.git_remote.client import GitRepository

from .config import Settings
from .log_setup import configure_logging
from .push_gate import (
    EXIT_CONFIG_ERROR,
    EXIT_INFRASTRUCTURE_ERROR,
    GateResult,
    PushGate,
    build_lease_manager,
)
from .updates import parse_updates

logger = structlog.get_logger()

PREFIX = "[pushgate]"


def _load_settings(ctx: click.Context) -> Settings:
    """Settings from environment/.env, with command-line overrides on top."""
    overrides = {k: v for k, v in ctx.obj.items() if v is not None}
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        click.echo(f"{PREFIX} Configuration error: {problems}", err=True)
        ctx.exit(EXIT_CONFIG_ERROR)

    configure_logging(settings)
    return settings


def _read_updates():
    return parse_updates(sys.stdin)


def _report(result: GateResult) -> None:
    click.echo(f"{PREFIX} {result.describe()}", err=True)


def _format_age(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.0f}s"
    mins = int(seconds // 60)
    return f"{mins}m{seconds % 60:02.0f}s"


@click.group()
@click.version_option(package_name="pushgate")
@click.option("--lock-root", type=click.Path(path_type=Path), help="Root of the shared lease store.")
@click.option("--ttl", type=int, help="Lease time-to-live in seconds.")
@click.option("--max-attempts", type=int, help="Lease acquisition attempts per scope.")
@click.option("--global-lease/--no-global-lease", default=None, help="Take the repository-wide lease.")
@click.option("--ref-leases/--no-ref-leases", default=None, help="Take one lease per updated reference.")
@click.option("--refresh/--no-refresh", default=None, help="Fetch the remote before validating.")
@click.option("--dry-run/--no-dry-run", default=None, help="Validate only, never take leases.")
@click.option("--log-level", help="DEBUG, INFO, WARNING or ERROR.")
@click.pass_context
def cli(ctx, lock_root, ttl, max_attempts, global_lease, ref_leases, refresh, dry_run, log_level):
    """Push gate - serializes pushes through leases on a shared filesystem."""
    ctx.obj = {
        "lock_store_root": lock_root,
        "lock_ttl_seconds": ttl,
        "max_retry_attempts": max_attempts,
        "enable_global_lease": global_lease,
        "enable_per_reference_lease": ref_leases,
        "refresh_remote": refresh,
        "dry_run": dry_run,
        "log_level": log_level,
    }


@cli.command()
@click.argument("remote", required=False)
@click.argument("url", required=False)
@click.pass_context
def check(ctx, remote: str | None, url: str | None):
    """Gate a push (pre-push hook).

    Reads "<local ref> <local sha> <remote ref> <remote sha>" lines from
    stdin. On success the leases stay held until `pushgate release` or
    until they expire.
    """
    settings = _load_settings(ctx)
    updates = _read_updates()

    gate = PushGate(settings, GitRepository(settings))
    result = gate.evaluate(updates, remote or url)
    _report(result)

    if result.proceed and result.leases:
        click.echo(
            f"{PREFIX} Leases held for up to {settings.lock_ttl_seconds}s; "
            f"run `pushgate release` once the push finishes",
            err=True,
        )
    ctx.exit(result.exit_code)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--remote", help="Remote to refresh before validating.")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def run(ctx, remote: str | None, command: tuple[str, ...]):
    """Run COMMAND while holding the leases for the updates on stdin."""
    settings = _load_settings(ctx)
    updates = _read_updates()

    gate = PushGate(settings, GitRepository(settings))
    with gate.hold(updates, remote) as result:
        _report(result)
        if not result.proceed:
            ctx.exit(result.exit_code)

        logger.info("Running gated command", command=list(command))
        try:
            completed = subprocess.run(list(command))
        except OSError as e:
            click.echo(f"{PREFIX} Cannot run {command[0]}: {e}", err=True)
            ctx.exit(127)

    ctx.exit(completed.returncode)


@cli.command()
@click.option("--ref", "refs", multiple=True, help="Reference whose lease to release.")
@click.option("--global/--no-global", "include_global", default=True, help="Release the global lease.")
@click.pass_context
def release(ctx, refs: tuple[str, ...], include_global: bool):
    """Release leases after a push. Failures are left to TTL expiry.

    Without --ref, every reference lease recorded for this user on this
    host is released.
    """
    settings = _load_settings(ctx)
    manager = build_lease_manager(settings)

    scopes = [LeaseScope.for_global()] if include_global else []
    if refs:
        scopes.extend(LeaseScope.for_reference(ref) for ref in sorted(set(refs)))
    else:
        try:
            owned = manager.owned_scopes()
        except LeaseStoreError as e:
            click.echo(f"{PREFIX} Lease store error: {e}", err=True)
            ctx.exit(EXIT_INFRASTRUCTURE_ERROR)
        scopes.extend(scope for scope in owned if not scope.is_global)

    released = manager.release_all(scopes)
    click.echo(f"Released {released} of {len(scopes)} lease(s)")


@cli.command()
@click.pass_context
def status(ctx):
    """Show lease artifacts in the store."""
    settings = _load_settings(ctx)
    manager = build_lease_manager(settings)

    try:
        leases = manager.describe_leases(settings.lock_ttl_seconds)
    except LeaseStoreError as e:
        click.echo(f"{PREFIX} Lease store error: {e}", err=True)
        ctx.exit(EXIT_INFRASTRUCTURE_ERROR)

    if not leases:
        click.echo("No leases.")
        return

    for info in leases:
        state = "live" if info.live else "stale"
        owner = "unknown owner"
        if info.owner is not None:
            owner = f"{info.owner.user}@{info.owner.host} pid={info.owner.pid}"
        click.echo(f"{str(info.scope):40} {state:5} age={_format_age(info.age_seconds):>8}  {owner}")


if __name__ == "__main__":
    cli()
