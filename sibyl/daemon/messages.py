"""Request and response structures exchanged between client and daemon."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sibyl.daemon.commands import Command


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Request:
    """
    Everything the daemon might need to fulfil one command.

    Built once by the client and consumed exactly once by the daemon.
    """
    command: "Command"
    issued_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Response:
    """Anything the client should report back to the user."""
    message: str
