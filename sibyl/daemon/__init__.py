"""Daemon architecture for Sibyl.

This package provides the long-running background process that runs
programs on behalf of the CLI and keeps track of them.

Architecture:
- CommandContext: In-memory process table and log store
- DaemonServer: Sequential Unix socket server handling client requests
- DaemonClient: Lightweight client that connects to daemon via socket
"""

from sibyl.daemon.state import CommandContext
from sibyl.daemon.client import DaemonClient
from sibyl.daemon.messages import Request, Response
from sibyl.daemon.protocol import (
    serialize_request,
    deserialize_request,
    serialize_response,
    deserialize_response,
)

__all__ = [
    "CommandContext",
    "DaemonClient",
    "Request",
    "Response",
    "serialize_request",
    "deserialize_request",
    "serialize_response",
    "deserialize_response",
]
