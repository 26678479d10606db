"""Commands executable by the daemon.

The set of commands is closed: every command class carries a wire tag and
is listed in COMMANDS, which the protocol uses to rebuild the concrete
command from a decoded payload. Adding a command means adding a class here
and an entry to COMMANDS.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Type

from sibyl.daemon.logs import LOG_SUFFIX, derive_log_name
from sibyl.daemon.messages import Request, Response, utc_now
from sibyl.daemon.state import CommandContext

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """A command could not be carried out."""


class Command(ABC):
    """An action the daemon can execute on behalf of a client."""

    tag: ClassVar[str]

    @abstractmethod
    def execute(self, request: Request, context: CommandContext) -> Response:
        """Run the command against the daemon's state."""

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.tag}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Command":
        return cls()


@dataclass(frozen=True)
class OnceCommand(Command):
    """Run a program once, logging its standard output to a new file."""

    tag: ClassVar[str] = "once"

    program: str
    args: List[str] = field(default_factory=list)

    def log_name(self) -> str:
        return derive_log_name(self.program, self.args)

    def execute(self, request: Request, context: CommandContext) -> Response:
        log_file = context.logs.create(self.log_name())
        try:
            internal_id = context.processes.spawn(self.program, self.args, log_file)
        except OSError as e:
            raise CommandError(f"failed to create process: {e}") from e

        return Response(
            f"successfully executed process: {self.program} | sibyl id: {internal_id}"
        )

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.tag, "program": self.program, "args": list(self.args)}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "OnceCommand":
        program = payload["program"]
        args = payload.get("args", [])
        if not isinstance(program, str) or not program:
            raise TypeError("'program' must be a non-empty string")
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise TypeError("'args' must be a list of strings")
        return cls(program=program, args=args)


@dataclass(frozen=True)
class LatestCommand(Command):
    """Send back the contents of the most recently modified log file."""

    tag: ClassVar[str] = "latest"

    def execute(self, request: Request, context: CommandContext) -> Response:
        directory = context.logs.directory
        if not directory.is_dir():
            raise CommandError(f"no log files found in {directory}")

        latest = None
        latest_mtime = -1
        for path in directory.glob(f"*{LOG_SUFFIX}"):
            if not path.is_file():
                continue
            mtime = path.stat().st_mtime_ns
            if mtime > latest_mtime:
                latest, latest_mtime = path, mtime

        if latest is None:
            raise CommandError(f"no log files found in {directory}")

        logger.debug("latest log file is %s", latest)
        return Response(latest.read_text(encoding="utf-8", errors="replace"))


@dataclass(frozen=True)
class PingCommand(Command):
    """Report how long the request took to reach the daemon."""

    tag: ClassVar[str] = "ping"

    def execute(self, request: Request, context: CommandContext) -> Response:
        elapsed = utc_now() - request.issued_at
        millis = max(0, int(elapsed.total_seconds() * 1000))
        return Response(f"pong! {millis}ms")


@dataclass(frozen=True)
class StatusCommand(Command):
    """Report the status of a process by its internal id."""

    tag: ClassVar[str] = "status"

    id: int

    def execute(self, request: Request, context: CommandContext) -> Response:
        status = context.processes.status(self.id)
        if status is None:
            return Response(f"no process found with id {self.id}")
        return Response(str(status))

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.tag, "id": self.id}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StatusCommand":
        internal_id = payload["id"]
        if isinstance(internal_id, bool) or not isinstance(internal_id, int):
            raise TypeError("'id' must be an integer")
        return cls(id=internal_id)


@dataclass(frozen=True)
class ListCommand(Command):
    """List every process spawned during this daemon's lifetime."""

    tag: ClassVar[str] = "list"

    def execute(self, request: Request, context: CommandContext) -> Response:
        lines = ["list of processes:"]
        for process in context.processes.list():
            lines.append(f"  SPID: {process.internal_id} - {process.command_line}")
        return Response("\n".join(lines) + "\n")


COMMANDS: Dict[str, Type[Command]] = {
    cls.tag: cls
    for cls in (OnceCommand, LatestCommand, PingCommand, StatusCommand, ListCommand)
}


def dispatch(request: Request, context: CommandContext) -> Response:
    """
    Execute the request's command and always produce a response.

    Failures inside a command are logged and reported back to the client
    as an error message; they never escape to the connection or the daemon.
    """
    command = request.command
    try:
        return command.execute(request, context)
    except Exception as e:
        logger.exception(f"Error executing {command.tag} command: {e}")
        return Response(f"error: {e}")
