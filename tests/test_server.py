"""
Tests for daemon/server.py and daemon/client.py - full request/response
exchanges over a real Unix socket.
"""

import shutil
import socket
import struct
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from sibyl.core.configs import DaemonConfig
from sibyl.daemon.client import DaemonClient
from sibyl.daemon.commands import PingCommand
from sibyl.daemon.messages import Request
from sibyl.daemon.protocol import send_frame, serialize_request
from sibyl.daemon.server import DaemonServer, main


class TestDaemonServer(unittest.TestCase):

    def setUp(self):
        # keep the socket path short: sun_path is limited to ~100 bytes
        self.temp_dir = tempfile.mkdtemp(prefix="sibyl-", dir="/tmp")
        root = Path(self.temp_dir)
        self.config = DaemonConfig(
            socket_path=root / "sibyl.sock",
            log_directory=root / "logs",
            pid_path=root / "sibyld.pid",
            daemon_log_path=root / "sibyld.log",
        )
        self.server = DaemonServer(
            socket_path=self.config.socket_path,
            log_directory=self.config.log_directory,
            pid_path=self.config.pid_path,
        )
        self.server.bind()
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.client = DaemonClient(config=self.config, timeout=10.0)

    def tearDown(self):
        self.server.stop()
        self.thread.join(timeout=5)
        self.server.close()
        for process in self.server.context.processes.list():
            if process.handle.poll() is None:
                process.handle.kill()
            process.handle.wait()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _raw_connection(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(10.0)
        sock.connect(str(self.config.socket_path))
        return sock

    def test_bind_writes_pid_file_and_restricts_socket(self):
        self.assertTrue(self.config.pid_path.exists())
        self.assertEqual(self.config.socket_path.stat().st_mode & 0o777, 0o600)

    def test_ping(self):
        self.assertRegex(self.client.ping().message, r"^pong! \d+ms$")
        self.assertTrue(self.client.is_daemon_running())

    def test_once_status_latest_list(self):
        response = self.client.once("echo", ["hello"])
        self.assertEqual(response.message, "successfully executed process: echo | sibyl id: 1")

        deadline = time.monotonic() + 5
        status = self.client.status(1).message
        while "exited" not in status and time.monotonic() < deadline:
            time.sleep(0.01)
            status = self.client.status(1).message
        self.assertIn("wait status  : exited (exit code 0)", status)

        self.assertEqual(self.client.latest().message, "hello\n")
        self.assertEqual(self.client.list_processes().message, "list of processes:\n  SPID: 1 - echo hello\n")
        self.assertEqual(self.client.status(2).message, "no process found with id 2")

    def test_command_failure_does_not_stop_the_daemon(self):
        message = self.client.once("/nonexistent/sibyl-test-program").message
        self.assertTrue(message.startswith("error:"), message)
        self.assertEqual(self.client.list_processes().message, "list of processes:\n")
        self.assertRegex(self.client.ping().message, r"^pong! \d+ms$")

    def test_malformed_request_drops_only_that_connection(self):
        with self._raw_connection() as sock:
            send_frame(sock, b'{"command": {"type": "reboot"}, "issued_at": "x"}')
            # the daemon closes the connection without answering
            self.assertEqual(sock.recv(8), b"")

        self.assertRegex(self.client.ping().message, r"^pong! \d+ms$")

    def test_truncated_frame_drops_only_that_connection(self):
        with self._raw_connection() as sock:
            sock.sendall(struct.pack("<Q", 100) + b"only a few bytes")
            sock.shutdown(socket.SHUT_WR)
            self.assertEqual(sock.recv(8), b"")

        self.assertRegex(self.client.ping().message, r"^pong! \d+ms$")

    def test_client_disconnecting_before_response(self):
        with self._raw_connection() as sock:
            send_frame(sock, serialize_request(Request(command=PingCommand())))

        self.assertRegex(self.client.ping().message, r"^pong! \d+ms$")

    def test_requests_are_served_in_order(self):
        for n in range(5):
            self.client.once("echo", [str(n)])
        listed = self.client.list_processes().message.splitlines()[1:]
        self.assertEqual(listed, [f"  SPID: {n + 1} - echo {n}" for n in range(5)])

    def test_close_removes_socket_and_pid_files(self):
        self.server.stop()
        self.thread.join(timeout=5)
        self.assertFalse(self.thread.is_alive())

        self.server.close()
        self.assertFalse(self.config.socket_path.exists())
        self.assertFalse(self.config.pid_path.exists())


class TestServerEntryPoint(unittest.TestCase):

    def test_command_line_overrides_config(self):
        config = DaemonConfig()
        with patch("sibyl.daemon.server.get_daemon_config", return_value=config), \
                patch("sibyl.daemon.server.run_daemon") as run_daemon:
            main(["--socket-path", "/tmp/other.sock", "--log-dir", "/tmp/other-logs", "--daemonize"])

        run_daemon.assert_called_once_with(config=config, daemonize=True)
        self.assertEqual(config.socket_path, Path("/tmp/other.sock"))
        self.assertEqual(config.log_directory, Path("/tmp/other-logs"))

    def test_bad_configuration_exits(self):
        with patch("sibyl.daemon.server.get_daemon_config", side_effect=ValueError("bad")), \
                patch("sibyl.daemon.server.run_daemon") as run_daemon:
            with self.assertRaises(SystemExit) as context:
                main([])

        self.assertEqual(context.exception.code, 1)
        run_daemon.assert_not_called()


class TestDaemonClientWithoutDaemon(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix="sibyl-", dir="/tmp")
        root = Path(self.temp_dir)
        self.config = DaemonConfig(
            socket_path=root / "missing.sock",
            log_directory=root / "logs",
            pid_path=root / "sibyld.pid",
            daemon_log_path=root / "sibyld.log",
        )
        self.client = DaemonClient(config=self.config)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_socket_raises_file_not_found(self):
        with self.assertRaises(FileNotFoundError):
            self.client.ping()
        self.assertFalse(self.client.is_daemon_running())

    def test_stale_socket_file_refuses_connection(self):
        stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        stale.bind(str(self.config.socket_path))
        stale.close()

        with self.assertRaises(ConnectionRefusedError):
            self.client.ping()
        self.assertFalse(self.client.is_daemon_running())

    def test_stop_without_pid_file(self):
        self.assertIsNone(self.client.read_pid())
        self.assertFalse(self.client.stop_daemon())

    def test_start_reaps_launcher_before_waiting_for_daemon(self):
        with patch("sibyl.daemon.client.subprocess.Popen") as popen, \
                patch.object(DaemonClient, "is_daemon_running", side_effect=[False, True]):
            popen.return_value.wait.return_value = 0
            self.assertTrue(self.client.start_daemon(wait=2.0))

        popen.return_value.wait.assert_called_once_with(timeout=2.0)
        argv = popen.call_args.args[0]
        self.assertIn("--daemonize", argv)
        self.assertEqual(argv[-1], str(self.config.socket_path))

    def test_start_fails_when_launcher_fails(self):
        with patch("sibyl.daemon.client.subprocess.Popen") as popen, \
                patch.object(DaemonClient, "is_daemon_running", return_value=False) as running:
            popen.return_value.wait.return_value = 1
            self.assertFalse(self.client.start_daemon(wait=2.0))

        popen.return_value.wait.assert_called_once_with(timeout=2.0)
        running.assert_called_once_with()

    def test_stop_with_stale_pid_file_removes_it(self):
        # PIDs this large are never handed out on Linux (pid_max <= 2**22)
        self.config.pid_path.write_text("99999999")
        self.assertFalse(self.client.stop_daemon())
        self.assertFalse(self.config.pid_path.exists())


if __name__ == "__main__":
    unittest.main()
