"""Per-daemon state handed to every command.

The daemon serves one connection at a time, so the context is only ever
touched by a single command at once and needs no locking. A concurrent
server would have to guard it with a mutex or give it a single owner.
"""

from dataclasses import dataclass, field
from pathlib import Path

from sibyl.daemon.logs import LogStore
from sibyl.daemon.processes import ProcessTable


@dataclass
class CommandContext:
    """All resources a command may read or mutate while executing."""
    logs: LogStore
    processes: ProcessTable = field(default_factory=ProcessTable)

    @classmethod
    def create(cls, log_directory: Path) -> "CommandContext":
        return cls(logs=LogStore(log_directory))
