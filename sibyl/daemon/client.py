"""Lightweight client for daemon communication.

This module provides a thin client that connects to the daemon via Unix
socket, sends exactly one request and blocks for exactly one response.

Usage:
    client = DaemonClient()
    response = client.once("echo", ["hello"])
    print(response.message)
"""

import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional

from sibyl.core.configs import DaemonConfig, get_daemon_config
from sibyl.daemon.commands import (
    Command,
    LatestCommand,
    ListCommand,
    OnceCommand,
    PingCommand,
    StatusCommand,
)
from sibyl.daemon.messages import Request, Response
from sibyl.daemon.protocol import receive_response, send_request


class DaemonClient:
    """
    Lightweight client for daemon communication.

    Designed for minimal overhead:
    - Uses stdlib socket
    - One connection per request
    - No retries
    """

    def __init__(
        self,
        socket_path: Optional[Path] = None,
        timeout: Optional[float] = None,
        config: Optional[DaemonConfig] = None,
    ):
        """
        Initialize client.

        Args:
            socket_path: Path to Unix socket (default: from configuration)
            timeout: Socket timeout in seconds (None = block indefinitely)
            config: Daemon settings, used for the PID file and daemon startup
        """
        self.config = config or get_daemon_config()
        self.socket_path = Path(socket_path) if socket_path else self.config.socket_path
        self.timeout = timeout

    def send(self, command: Command, timeout: Optional[float] = None) -> Response:
        """
        Send one command to the daemon and return its response.

        Raises:
            FileNotFoundError: If the socket does not exist (daemon not running)
            ConnectionRefusedError: If nothing is listening on the socket
            ProtocolError: If the response cannot be decoded
            OSError: Other socket errors, including a broken connection
        """
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout if timeout is not None else self.timeout)

        try:
            sock.connect(str(self.socket_path))
            send_request(sock, Request(command=command))
            return receive_response(sock)
        finally:
            sock.close()

    def once(self, program: str, args: Optional[List[str]] = None) -> Response:
        return self.send(OnceCommand(program=program, args=list(args or [])))

    def latest(self) -> Response:
        return self.send(LatestCommand())

    def ping(self, timeout: Optional[float] = None) -> Response:
        return self.send(PingCommand(), timeout=timeout)

    def status(self, internal_id: int) -> Response:
        return self.send(StatusCommand(id=internal_id))

    def list_processes(self) -> Response:
        return self.send(ListCommand())

    def is_daemon_running(self) -> bool:
        """
        Check if daemon is running and answering.

        Returns True if the socket exists and a ping gets a reply.
        """
        if not self.socket_path.exists():
            return False

        try:
            self.ping(timeout=2.0)
            return True
        except (ValueError, OSError):
            return False

    def read_pid(self) -> Optional[int]:
        """Return the daemon PID from the PID file, or None if unavailable."""
        try:
            return int(self.config.pid_path.read_text().strip())
        except (OSError, ValueError):
            return None

    def start_daemon(self, wait: float = 5.0) -> bool:
        """
        Start the daemon in background.

        Returns True if daemon started successfully.
        """
        if self.is_daemon_running():
            return True

        launcher = subprocess.Popen(
            [
                sys.executable,
                "-m",
                "sibyl.daemon.server",
                "--daemonize",
                "--socket-path",
                str(self.socket_path),
            ],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

        # The launcher exits as soon as it has forked the daemon; reap it
        try:
            if launcher.wait(timeout=wait) != 0:
                return False
        except subprocess.TimeoutExpired:
            return False

        # Wait for daemon to be ready
        deadline = time.monotonic() + wait
        while time.monotonic() < deadline:
            time.sleep(0.1)
            if self.is_daemon_running():
                return True

        return False

    def stop_daemon(self) -> bool:
        """
        Send SIGTERM to the daemon named in the PID file.

        Returns True if a signal was delivered. A stale PID file is removed.
        """
        pid = self.read_pid()
        if pid is None:
            return False

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            # Stale PID file - remove it
            self.config.pid_path.unlink(missing_ok=True)
            return False
        return True
