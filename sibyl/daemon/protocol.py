"""Length-prefixed JSON protocol for daemon IPC.

Every message on the socket is a frame:

    +----------------------------+------------------------+
    | length (8 bytes, LE uint)  | payload (length bytes) |
    +----------------------------+------------------------+

Request payload:
    {
        "command": {"type": "once" | "latest" | "ping" | "status" | "list",
                    ...command fields},
        "issued_at": "2024-01-02T03:04:05.000006+00:00"
    }

Response payload:
    {"message": str}

The "type" tag selects the concrete command class from
sibyl.daemon.commands.COMMANDS. No maximum frame size is enforced.
"""

import json
import socket
import struct
from datetime import datetime
from typing import Any, Dict

from sibyl.daemon.commands import COMMANDS, Command
from sibyl.daemon.messages import Request, Response

_LENGTH = struct.Struct("<Q")


class TransportError(ConnectionError):
    """The connection closed or broke in the middle of a frame."""


class ProtocolError(ValueError):
    """A payload could not be decoded into a request or response."""


def send_frame(sock: socket.socket, payload: bytes) -> None:
    """Write one length-prefixed frame."""
    sock.sendall(_LENGTH.pack(len(payload)) + payload)


def _recv_exactly(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            raise TransportError(
                f"connection closed after {size - remaining} of {size} bytes"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def receive_frame(sock: socket.socket) -> bytes:
    """
    Block until one complete frame has been read and return its payload.

    Raises:
        TransportError: If the peer closes the connection mid-frame
        OSError: Other socket errors
    """
    (size,) = _LENGTH.unpack(_recv_exactly(sock, _LENGTH.size))
    return _recv_exactly(sock, size)


def _load_json(data: bytes) -> Dict[str, Any]:
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"invalid payload: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("payload is not a JSON object")
    return obj


def encode_command(command: Command) -> Dict[str, Any]:
    return command.to_payload()


def decode_command(payload: Any) -> Command:
    """
    Rebuild a command from its tagged payload.

    Raises:
        ProtocolError: If the tag is unknown or the fields are malformed
    """
    if not isinstance(payload, dict):
        raise ProtocolError("command is not a JSON object")
    tag = payload.get("type")
    command_cls = COMMANDS.get(tag) if isinstance(tag, str) else None
    if command_cls is None:
        raise ProtocolError(f"unknown command type: {tag!r}")
    try:
        return command_cls.from_payload(payload)
    except (KeyError, TypeError) as e:
        raise ProtocolError(f"malformed {tag} command: {e}") from e


def serialize_request(request: Request) -> bytes:
    """Serialize a request to UTF-8 encoded JSON bytes."""
    return json.dumps({
        "command": encode_command(request.command),
        "issued_at": request.issued_at.isoformat(),
    }).encode("utf-8")


def deserialize_request(data: bytes) -> Request:
    """
    Deserialize a request from bytes.

    Raises:
        ProtocolError: If data is not a valid request
    """
    obj = _load_json(data)
    command = decode_command(obj.get("command"))
    try:
        issued_at = datetime.fromisoformat(obj["issued_at"])
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"invalid issued_at: {e}") from e
    if issued_at.tzinfo is None:
        raise ProtocolError("issued_at must carry a timezone")
    return Request(command=command, issued_at=issued_at)


def serialize_response(response: Response) -> bytes:
    """Serialize a response to UTF-8 encoded JSON bytes."""
    return json.dumps({"message": response.message}).encode("utf-8")


def deserialize_response(data: bytes) -> Response:
    """
    Deserialize a response from bytes.

    Raises:
        ProtocolError: If data is not a valid response
    """
    message = _load_json(data).get("message")
    if not isinstance(message, str):
        raise ProtocolError("response has no message")
    return Response(message=message)


def send_request(sock: socket.socket, request: Request) -> None:
    send_frame(sock, serialize_request(request))


def receive_request(sock: socket.socket) -> Request:
    return deserialize_request(receive_frame(sock))


def send_response(sock: socket.socket, response: Response) -> None:
    send_frame(sock, serialize_response(response))


def receive_response(sock: socket.socket) -> Response:
    return deserialize_response(receive_frame(sock))
