"""Log store for output captured from spawned processes.

Every `once` invocation gets its own `<directory>/<name>.slog` file. The
store only remembers the files it created during this daemon's lifetime;
nothing is reloaded from disk at startup and nothing is ever deleted.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".slog"

# Longest command prefix, in UTF-8 bytes, kept in a log name (filenames are capped at 255 bytes)
MAX_COMMAND_BYTES = 128

_UNSAFE_CHARS = re.compile(r"[\s/\\\x00]+")


def derive_log_name(program: str, args: List[str], now: Optional[datetime] = None) -> str:
    """
    Build a log name for a command line.

    The program and its arguments are joined with underscores and suffixed
    with a local timestamp, so repeated identical invocations only collide
    when issued within the same microsecond.

    Example:
        >>> derive_log_name("echo", ["hello"], datetime(2024, 1, 2, 3, 4, 5, 6))
        'echo_hello_2024-01-02T03:04:05.000006'
    """
    command = "_".join([program, *args])
    command = _UNSAFE_CHARS.sub("-", command)
    # cut on bytes; a multibyte character split at the edge is dropped
    encoded = command.encode("utf-8", "surrogateescape")[:MAX_COMMAND_BYTES]
    command = encoded.decode("utf-8", "ignore")
    stamp = (now or datetime.now().astimezone()).isoformat(timespec="microseconds")
    return f"{command}_{stamp.replace(' ', '-')}"


@dataclass(frozen=True)
class LogFile:
    path: Path

    def open(self) -> BinaryIO:
        """Open the log for appending, creating it if missing."""
        return open(self.path, "ab")


class LogStore:
    """
    Manages a root directory of per-invocation log files.

    Not thread-safe: the daemon serves one connection at a time.
    """

    def __init__(self, directory: Path):
        self._directory = Path(directory)
        self._logs: Dict[str, LogFile] = {}

    @property
    def directory(self) -> Path:
        """Root directory that holds the log files."""
        return self._directory

    def create(self, name: str) -> LogFile:
        """
        Register a log file for `name` and return it.

        The root directory (and any missing parents) is created on every
        call. Re-using a name replaces the map entry; the file itself is
        only ever appended to.
        """
        if not self._directory.exists():
            logger.debug(f"log directory {self._directory} does not exist, creating it")
        self._directory.mkdir(parents=True, exist_ok=True)

        log_file = LogFile(self._directory / f"{name}{LOG_SUFFIX}")
        logger.debug(f"creating output log at {log_file.path}")
        self._logs[name] = log_file
        return log_file

    def get(self, name: str) -> Optional[LogFile]:
        return self._logs.get(name)

    def __len__(self) -> int:
        return len(self._logs)
