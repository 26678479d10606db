"""In-memory table of every process spawned by this daemon.

The table is append-only: entries are never removed or reaped, and internal
ids are handed out sequentially starting at 1. Its contents are lost when
the daemon exits.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from sibyl.daemon.logs import LogFile

logger = logging.getLogger(__name__)


class WaitState(Enum):
    RUNNING = "running"
    EXITED = "exited"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class WaitStatus:
    """Outcome of a non-blocking poll of a child process."""
    state: WaitState
    os_pid: Optional[int] = None
    exit_code: Optional[int] = None

    @classmethod
    def running(cls, os_pid: int) -> "WaitStatus":
        return cls(WaitState.RUNNING, os_pid=os_pid)

    @classmethod
    def exited(cls, exit_code: Optional[int]) -> "WaitStatus":
        return cls(WaitState.EXITED, exit_code=exit_code)

    @classmethod
    def unknown(cls) -> "WaitStatus":
        return cls(WaitState.UNKNOWN)

    def __str__(self) -> str:
        if self.state is WaitState.RUNNING:
            return f"running (pid {self.os_pid})"
        if self.state is WaitState.EXITED:
            if self.exit_code is None:
                return "exited (no exit code)"
            return f"exited (exit code {self.exit_code})"
        return "unknown"


@dataclass
class TrackedProcess:
    internal_id: int
    os_pid: int
    command_line: str
    started_at: datetime
    log_path: Path
    handle: subprocess.Popen = field(repr=False, compare=False)


@dataclass(frozen=True)
class ProcessStatus:
    """Read-only snapshot of a tracked process."""
    internal_id: int
    os_pid: int
    command_line: str
    started_at: datetime
    log_path: Path
    wait_status: WaitStatus

    def __str__(self) -> str:
        return "\n".join([
            f"process status for ({self.internal_id})",
            f"  command line : {self.command_line}",
            f"  started at   : {self.started_at}",
            f"  OS PID       : {self.os_pid}",
            f"  wait status  : {self.wait_status}",
            f"  log file     : {self.log_path}",
        ])


class ProcessTable:
    """
    Registry of spawned processes, keyed by a Sibyl-assigned internal id.

    The Popen handle of each entry is owned by the table; nothing else
    should wait on or signal the underlying OS process.
    """

    def __init__(self):
        self._count = 0
        self._processes: List[TrackedProcess] = []

    def spawn(self, program: str, args: List[str], log_file: LogFile) -> int:
        """
        Start `program` with `args`, stdout appended to `log_file`.

        stdin and stderr are attached to /dev/null. An id is only allocated
        once the spawn succeeded, so a failed spawn leaves no entry behind.

        Raises:
            OSError: If the log file cannot be opened or the program cannot
                be executed (FileNotFoundError, PermissionError, ...).
        """
        argv = [program, *args]
        with log_file.open() as output:
            handle = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=subprocess.DEVNULL,
            )

        self._count += 1
        process = TrackedProcess(
            internal_id=self._count,
            os_pid=handle.pid,
            command_line=shlex.join(argv),
            started_at=datetime.now().astimezone(),
            log_path=log_file.path,
            handle=handle,
        )
        self._processes.append(process)
        logger.info(
            f"spawned process {process.internal_id} "
            f"(os pid {process.os_pid}): {process.command_line}"
        )
        return process.internal_id

    def get(self, internal_id: int) -> Optional[TrackedProcess]:
        for process in self._processes:
            if process.internal_id == internal_id:
                return process
        return None

    def status(self, internal_id: int) -> Optional[ProcessStatus]:
        """
        Poll a tracked process without blocking.

        Returns None when no process was ever registered under `internal_id`.
        A process killed by a signal reports an exit with no exit code, and
        a failing poll reports an unknown status instead of raising.
        """
        process = self.get(internal_id)
        if process is None:
            return None

        # Popen.poll() absorbs most wait errors itself; this covers platform poll failures
        try:
            returncode = process.handle.poll()
        except OSError as e:
            logger.warning(f"failed to poll process {internal_id}: {e}")
            wait_status = WaitStatus.unknown()
        else:
            if returncode is None:
                wait_status = WaitStatus.running(process.os_pid)
            elif returncode < 0:
                wait_status = WaitStatus.exited(None)
            else:
                wait_status = WaitStatus.exited(returncode)

        return ProcessStatus(
            internal_id=process.internal_id,
            os_pid=process.os_pid,
            command_line=process.command_line,
            started_at=process.started_at,
            log_path=process.log_path,
            wait_status=wait_status,
        )

    def list(self) -> Tuple[TrackedProcess, ...]:
        """Every tracked process, live or exited, in spawn order."""
        return tuple(self._processes)

    def __len__(self) -> int:
        return len(self._processes)
