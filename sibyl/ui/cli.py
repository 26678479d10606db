"""Main CLI entry point - one verb, one request, one response."""

from typing import Callable

import typer

from sibyl.core.configs import get_daemon_config
from sibyl.daemon.client import DaemonClient
from sibyl.daemon.messages import Response

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Sibyl - run programs through the sibyld daemon.",
)


# ============================================================================
# Shared Setup
# ============================================================================

def _get_client() -> DaemonClient:
    """Load config and create a client. Exits on error."""
    try:
        config = get_daemon_config()
    except ValueError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        raise typer.Exit(1)
    return DaemonClient(config=config)


def _exchange(call: Callable[[DaemonClient], Response]) -> None:
    """
    Run one request/response exchange and print the daemon's message.

    An unreachable daemon is not a failure: print a notice and exit cleanly.
    """
    client = _get_client()
    try:
        response = call(client)
    except (FileNotFoundError, ConnectionRefusedError):
        typer.echo("failed to establish link to sibyld")
        raise typer.Exit(0)
    except (ValueError, OSError) as e:
        typer.echo(f"Error talking to daemon: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(response.message)


# ============================================================================
# Commands - each maps 1:1 onto a daemon command
# ============================================================================

@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        # --help belongs to the program being run
        "help_option_names": [],
    },
)
def once(
    ctx: typer.Context,
    program: str = typer.Argument(..., help="Program to run"),
) -> None:
    """
    Run a program once, capturing its output to a new log file.

    Example: sibyl once ls -la /tmp
    """
    args = list(ctx.args)
    _exchange(lambda client: client.once(program, args))


@app.command()
def latest() -> None:
    """Print the most recent log file."""
    _exchange(lambda client: client.latest())


@app.command()
def ping() -> None:
    """Measure the round trip to the daemon."""
    _exchange(lambda client: client.ping())


@app.command()
def status(
    id: int = typer.Argument(..., help="Sibyl id reported by 'once'"),
) -> None:
    """Show the status of a process started with 'once'."""
    _exchange(lambda client: client.status(id))


@app.command("list")
def list_processes() -> None:
    """List every process started during this daemon's lifetime."""
    _exchange(lambda client: client.list_processes())


@app.command()
def daemon(
    action: str = typer.Argument(..., help="Action: start, stop, or status"),
) -> None:
    """
    Manage the sibyld daemon.

    Actions:
        start  - Start the daemon in the background
        stop   - Stop a running daemon
        status - Show whether the daemon is running
    """
    from sibyl.ui.daemon_commands import handle_daemon
    handle_daemon(action)


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()
