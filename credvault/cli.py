"""Click-based CLI entrypoint for credvault.

Installed both as ``credvault`` and as ``git-credential-credvault`` so Git
can run it through ``credential.helper = credvault``::

    git config --global credential.helper "credvault --backend file"

Git appends the operation (``get``, ``store`` or ``erase``) and writes the
credential stream to stdin.  Standard output carries protocol data only;
every diagnostic goes to stderr.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click

from credvault.backends import CacheDaemonBackend, create_backend
from credvault.cache_daemon import run_cache_daemon
from credvault.config import load_config
from credvault.errors import CredentialHelperError
from credvault.handler import CredentialHelper
from credvault.utils import format_kv, log_debug, log_error

BACKEND_CHOICES: tuple[str, ...] = ("auto", "keychain", "file", "cache")


# ---------------------------------------------------------------------------
# Custom Click Group
# ---------------------------------------------------------------------------


@click.command(name="ignored", hidden=True, context_settings={"ignore_unknown_options": True})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def _ignored(args: tuple[str, ...]) -> None:
    """Placeholder for operations this helper does not implement."""


class HelperGroup(click.Group):
    """Click group that ignores unknown operations.

    Git may grow new helper operations; a helper must silently ignore any
    operation it does not understand instead of failing.
    """

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[Optional[str], Optional[click.Command], list[str]]:
        if not args:
            return super().resolve_command(ctx, args)

        cmd_name = args[0]
        cmd_obj = self.get_command(ctx, cmd_name)
        if cmd_obj is not None:
            return cmd_name, cmd_obj, list(args[1:])

        log_debug(f"Ignoring unknown operation '{cmd_name}'")
        return "ignored", _ignored, list(args[1:])


# ---------------------------------------------------------------------------
# Main CLI Group
# ---------------------------------------------------------------------------


@click.group(cls=HelperGroup, invoke_without_command=True)
@click.option("--backend", type=click.Choice(BACKEND_CHOICES), default=None,
              help="Credential store (default: auto)")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Seconds before a backend call is abandoned")
@click.option("--cache-timeout", type=click.IntRange(min=1), default=None,
              help="Lifetime in seconds of cached credentials")
@click.option("--store-file", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Encrypted store location for the file backend")
@click.option("--socket", "socket_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Cache daemon socket")
@click.pass_context
def cli(
    ctx: click.Context,
    backend: Optional[str],
    timeout: Optional[float],
    cache_timeout: Optional[int],
    store_file: Optional[Path],
    socket_path: Optional[Path],
) -> None:
    """Credvault - Git credential helper for personal access tokens."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "backend": backend,
        "timeout": timeout,
        "cache_timeout": cache_timeout,
        "store_file": store_file,
        "socket_path": socket_path,
    }

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help(), err=True)


def _run_operation(ctx: click.Context, operation: str) -> None:
    """Build the helper from the resolved config and serve *operation*."""
    try:
        config = load_config(ctx.obj["overrides"])
        helper = CredentialHelper(
            create_backend(config),
            timeout=config.timeout,
            fallback_env=config.fallback_env,
        )
        helper.run(operation, sys.stdin, sys.stdout)
    except CredentialHelperError as exc:
        log_error(str(exc))
        sys.exit(1)


# ---------------------------------------------------------------------------
# Protocol Commands
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def get(ctx: click.Context) -> None:
    """Print the stored credential for the request on stdin."""
    _run_operation(ctx, "get")


@cli.command()
@click.pass_context
def store(ctx: click.Context) -> None:
    """Save the credential on stdin."""
    _run_operation(ctx, "store")


@cli.command()
@click.pass_context
def erase(ctx: click.Context) -> None:
    """Forget the credential matching the request on stdin."""
    _run_operation(ctx, "erase")


# ---------------------------------------------------------------------------
# Cache Daemon & Diagnostics
# ---------------------------------------------------------------------------


@cli.command("cache-daemon")
@click.pass_context
def cache_daemon(ctx: click.Context) -> None:
    """Run the credential cache daemon in the foreground."""
    try:
        config = load_config(ctx.obj["overrides"])
        run_cache_daemon(config.socket_path, config.cache_timeout)
    except CredentialHelperError as exc:
        log_error(str(exc))
        sys.exit(1)


@cli.command("cache-exit")
@click.pass_context
def cache_exit(ctx: click.Context) -> None:
    """Stop a running cache daemon, dropping every cached credential."""
    try:
        config = load_config(ctx.obj["overrides"])
        client = CacheDaemonBackend(config.socket_path, timeout=config.timeout, spawn=False)
        if not client.stop_daemon():
            log_debug("No cache daemon running")
    except CredentialHelperError as exc:
        log_error(str(exc))
        sys.exit(1)


@cli.command("config")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx: click.Context, json_output: bool) -> None:
    """Show the resolved helper configuration (never secrets)."""
    try:
        config = load_config(ctx.obj["overrides"])
    except CredentialHelperError as exc:
        log_error(str(exc))
        sys.exit(1)

    data = config.display_dict()
    if json_output:
        click.echo(json.dumps(data))
        return
    click.echo("Credvault config")
    for key, value in data.items():
        click.echo(format_kv(key, str(value)))


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def main() -> None:
    """Entry point for the CLI.

    Uses ``standalone_mode=False`` so that exit codes are managed here.
    Usage errors (bad options) are normalised to exit code 1, the code
    every helper failure uses.
    """
    try:
        result = cli(standalone_mode=False)
    except click.UsageError as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)
    except click.Abort:
        sys.exit(1)
    except SystemExit as exc:
        code = exc.code if isinstance(exc.code, int) else 1
        sys.exit(1 if code == 2 else code)
    if isinstance(result, int):
        sys.exit(result)


if __name__ == "__main__":
    main()
