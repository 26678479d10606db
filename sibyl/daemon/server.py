"""Unix socket server for the Sibyl daemon.

This module implements the long-running daemon process that:
1. Owns the process table and log store for its whole lifetime
2. Accepts one client connection at a time
3. Reads one request, dispatches it, writes one response, moves on

Usage:
    python -m sibyl.daemon.server [--socket-path PATH] [--log-dir PATH] [--daemonize]

    Or use the CLI:
    sibyl daemon start
"""

import argparse
import logging
import os
import signal
import socket
import sys
import threading
from pathlib import Path
from typing import Optional

from sibyl.core.configs import DaemonConfig, get_daemon_config
from sibyl.daemon.commands import dispatch
from sibyl.daemon.protocol import (
    ProtocolError,
    receive_request,
    send_response,
)
from sibyl.daemon.state import CommandContext

logger = logging.getLogger(__name__)

# How often the accept loop wakes up to check for a shutdown request
ACCEPT_POLL_INTERVAL = 0.5


class DaemonServer:
    """
    Sequential Unix socket server for the daemon.

    Requests are served strictly in arrival order: a connection is fully
    handled (read, dispatch, write) before the next one is accepted, which
    gives the command context a single owner without any locking.
    """

    def __init__(
        self,
        socket_path: Path,
        log_directory: Path,
        pid_path: Optional[Path] = None,
    ):
        """
        Initialize daemon server.

        Args:
            socket_path: Path to Unix socket
            log_directory: Root directory for process output logs
            pid_path: Path to PID file (None = don't write one)
        """
        self.socket_path = Path(socket_path)
        self.pid_path = Path(pid_path) if pid_path else None

        self.context = CommandContext.create(Path(log_directory))
        self.listener: Optional[socket.socket] = None
        self._shutdown_event = threading.Event()

    def bind(self) -> None:
        """Create the listening socket, replacing a stale socket file."""
        if self.socket_path.exists():
            self.socket_path.unlink()

        self.socket_path.parent.mkdir(parents=True, exist_ok=True)

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(str(self.socket_path))
            # Set socket permissions (owner only)
            os.chmod(self.socket_path, 0o600)
            listener.listen()
        except OSError:
            listener.close()
            raise
        listener.settimeout(ACCEPT_POLL_INTERVAL)
        self.listener = listener

        if self.pid_path:
            self.pid_path.parent.mkdir(parents=True, exist_ok=True)
            self.pid_path.write_text(str(os.getpid()))

        logger.info(f"Daemon listening on {self.socket_path}")

    def start(self) -> None:
        """Bind, serve until shutdown is requested, then clean up."""
        logger.info("Starting Sibyl daemon...")
        self.bind()
        try:
            self.serve_forever()
        finally:
            self.close()

    def serve_forever(self) -> None:
        """Accept and handle connections until stop() is called."""
        if self.listener is None:
            raise RuntimeError("server is not bound")

        while not self._shutdown_event.is_set():
            try:
                conn, _ = self.listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._shutdown_event.is_set():
                    break
                logger.warning(f"connection failed: {e}")
                continue

            try:
                self.handle_connection(conn)
            except Exception as e:
                logger.exception(f"Error handling client: {e}")

    def handle_connection(self, conn: socket.socket) -> None:
        """Serve exactly one request/response exchange on `conn`."""
        with conn:
            # No read timeout: a silent client holds the loop until it goes away
            conn.settimeout(None)
            try:
                request = receive_request(conn)
            except ProtocolError as e:
                logger.warning(f"discarding malformed request: {e}")
                return
            except OSError as e:
                logger.warning(f"failed to read request: {e}")
                return

            logger.info(f"got request: {request.command!r}")
            response = dispatch(request, self.context)

            try:
                send_response(conn, response)
            except OSError as e:
                logger.warning(f"failed to send response: {e}")
                return
            logger.debug(f"sent response: {response!r}")

    def stop(self) -> None:
        """Ask the accept loop to exit after the current connection."""
        self._shutdown_event.set()

    def close(self) -> None:
        """Close the listener and remove the socket and PID files."""
        logger.info("Cleaning up...")

        if self.listener is not None:
            self.listener.close()
            self.listener = None

        if self.socket_path.exists():
            self.socket_path.unlink()
        if self.pid_path and self.pid_path.exists():
            self.pid_path.unlink()

        logger.info("Daemon stopped")

    def _signal_handler(self, signum, frame) -> None:
        """Handle SIGTERM/SIGINT for graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down")
        self.stop()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _daemonize(log_path: Path) -> None:
    """Double-fork into the background with stdio redirected to `log_path`."""
    pid = os.fork()
    if pid > 0:
        # Parent exits
        os._exit(0)

    os.setsid()

    pid = os.fork()
    if pid > 0:
        os._exit(0)

    # Redirect stdin to /dev/null, stdout/stderr to the daemon log
    devnull = os.open(os.devnull, os.O_RDONLY)
    os.dup2(devnull, sys.stdin.fileno())
    os.close(devnull)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_file = open(log_path, "a")
    os.dup2(log_file.fileno(), sys.stdout.fileno())
    os.dup2(log_file.fileno(), sys.stderr.fileno())


def run_daemon(
    config: Optional[DaemonConfig] = None,
    daemonize: bool = False,
) -> None:
    """
    Run the daemon server.

    Args:
        config: Daemon settings (default: loaded from config file and environment)
        daemonize: Fork to background (Unix only)
    """
    config = config or get_daemon_config()

    if daemonize:
        _daemonize(config.daemon_log_path)

    configure_logging(config.log_level)

    server = DaemonServer(
        socket_path=config.socket_path,
        log_directory=config.log_directory,
        pid_path=config.pid_path,
    )

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, server._signal_handler)

    server.start()


def main(argv: Optional[list] = None) -> None:
    """Entry point for the sibyld console script."""
    parser = argparse.ArgumentParser(description="Sibyl daemon server")
    parser.add_argument(
        "--socket-path",
        help="Path to Unix socket",
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for captured process output",
    )
    parser.add_argument(
        "--daemonize",
        action="store_true",
        help="Fork to background",
    )

    args = parser.parse_args(argv)

    try:
        config = get_daemon_config()
    except ValueError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.socket_path:
        config.socket_path = Path(args.socket_path)
    if args.log_dir:
        config.log_directory = Path(args.log_dir)

    run_daemon(config=config, daemonize=args.daemonize)


if __name__ == "__main__":
    main()
