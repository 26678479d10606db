"""
Daemon Management Commands

CLI handlers for starting, stopping and inspecting sibyld.
This module is lazy-loaded only when daemon commands are used.
"""

from rich.console import Console
from rich.table import Table

from sibyl.core.configs import get_daemon_config
from sibyl.daemon.client import DaemonClient

console = Console()


def _get_client() -> DaemonClient:
    try:
        return DaemonClient(config=get_daemon_config())
    except ValueError as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        raise SystemExit(1)


def handle_daemon(action: str) -> None:
    """
    Route to appropriate daemon action.

    Args:
        action: One of 'start', 'stop', or 'status'
    """
    actions = {
        "start": daemon_start,
        "stop": daemon_stop,
        "status": daemon_status,
    }

    if action not in actions:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Available actions: start, stop, status")
        raise SystemExit(1)

    actions[action](_get_client())


def daemon_start(client: DaemonClient) -> None:
    """Start the daemon in the background if it is not already running."""
    if client.is_daemon_running():
        console.print(f"[yellow]sibyld is already running on {client.socket_path}[/yellow]")
        return

    if client.start_daemon():
        console.print(f"[green]sibyld started on {client.socket_path}[/green]")
    else:
        console.print("[red]Failed to start sibyld[/red]")
        console.print(f"See {client.config.daemon_log_path} for details")
        raise SystemExit(1)


def daemon_stop(client: DaemonClient) -> None:
    """Signal a running daemon to shut down."""
    if client.stop_daemon():
        console.print("[green]Sent shutdown signal to sibyld[/green]")
    else:
        console.print("[yellow]sibyld is not running[/yellow]")


def daemon_status(client: DaemonClient) -> None:
    """Display daemon state and the settings it runs with."""
    running = client.is_daemon_running()
    pid = client.read_pid()

    table = Table(title="sibyld", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Status", "[green]running[/green]" if running else "[red]stopped[/red]")
    table.add_row("PID", str(pid) if running and pid is not None else "-")
    table.add_row("Socket", str(client.socket_path))
    table.add_row("Log directory", str(client.config.log_directory))
    table.add_row("Daemon log", str(client.config.daemon_log_path))

    console.print(table)
