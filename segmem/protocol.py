"""Sending and receiving the inter-module messages over stream sockets.

Each ``send_*`` writes one complete message. Each ``recv_*`` reads the
body of a message whose operation code, if it has one, was already read
with :func:`recv_opcode`.
"""

from __future__ import annotations

import socket
import struct
from typing import Iterable, Sequence

from segmem import serialization
from segmem.models import ExecutionContext, ProcessTable, Segment

_INT = struct.Struct("<i")
_SIZE = struct.Struct("<Q")
_CHUNK = 65536


class ConnectionClosed(ConnectionError):
    """The peer closed the connection before a message was complete."""


# ------------------------------ primitives ------------------------------ #

def send_int(sock: socket.socket, value: int) -> None:
    """Send one 32-bit integer."""
    sock.sendall(_INT.pack(int(value)))


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes, or raise :class:`ConnectionClosed`."""
    if size < 0:
        raise ValueError("size must not be negative")
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(min(remaining, _CHUNK))
        if not chunk:
            raise ConnectionClosed(
                f"connection closed with {remaining} of {size} bytes missing"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_int(sock: socket.socket) -> int:
    """Read one 32-bit integer."""
    return _INT.unpack(recv_exact(sock, _INT.size))[0]


def recv_sized_payload(sock: socket.socket) -> bytes:
    """Read a size field and then that many bytes of payload."""
    size = _SIZE.unpack(recv_exact(sock, _SIZE.size))[0]
    return recv_exact(sock, size)


def send_opcode(sock: socket.socket, opcode: int) -> None:
    send_int(sock, opcode)


def recv_opcode(sock: socket.socket) -> int:
    """Read an operation code; close the socket if the peer went away."""
    try:
        return recv_int(sock)
    except OSError as exc:
        sock.close()
        if isinstance(exc, ConnectionClosed):
            raise
        raise ConnectionClosed(str(exc)) from exc


# ------------------------------ messages ------------------------------ #

def send_number(sock: socket.socket, number: int) -> None:
    sock.sendall(serialization.encode_number(number))


def recv_number(sock: socket.socket) -> int:
    return serialization.decode_number(recv_exact(sock, _INT.size))


def send_instructions(sock: socket.socket, instructions: Sequence[str]) -> None:
    sock.sendall(serialization.encode_instructions(instructions))


def recv_instructions(sock: socket.socket) -> list[str]:
    return serialization.decode_string_list(recv_sized_payload(sock))


def send_context(sock: socket.socket, context: ExecutionContext) -> None:
    sock.sendall(serialization.encode_context(context))


def recv_context(sock: socket.socket) -> ExecutionContext:
    return serialization.decode_context(recv_sized_payload(sock))


def send_eviction(sock: socket.socket, reason: int, params: Sequence[str]) -> None:
    sock.sendall(serialization.encode_eviction(reason, params))


def recv_eviction(sock: socket.socket) -> tuple[int, list[str]]:
    return serialization.decode_eviction(recv_sized_payload(sock))


def send_string(sock: socket.socket, text: str | bytes) -> None:
    sock.sendall(serialization.encode_string(text))


def recv_string(sock: socket.socket) -> str:
    return serialization.decode_string(recv_sized_payload(sock))


def send_segment_table(sock: socket.socket, segments: Iterable[Segment]) -> None:
    sock.sendall(serialization.encode_segments(segments))


def recv_segment_table(sock: socket.socket) -> list[Segment]:
    return serialization.decode_segment_table(recv_sized_payload(sock))


def send_create_segment_request(
    sock: socket.socket, pid: int, segment_id: int, size: int
) -> None:
    sock.sendall(
        serialization.encode_create_segment_request(pid, segment_id, size)
    )


def recv_create_segment_request(sock: socket.socket) -> tuple[int, int, int]:
    """pid, segment id and size of a creation request."""
    return serialization.decode_create_segment_request(
        recv_exact(sock, _INT.size * 3)
    )


def send_delete_segment_request(
    sock: socket.socket, segment_id: int, pid: int
) -> None:
    sock.sendall(serialization.encode_delete_segment_request(segment_id, pid))


def recv_delete_segment_request(sock: socket.socket) -> tuple[int, int]:
    """Segment id and pid of a deletion request."""
    return serialization.decode_delete_segment_request(
        recv_exact(sock, _INT.size * 2)
    )


def send_compaction_result(
    sock: socket.socket, tables: Iterable[ProcessTable], segment_count: int
) -> None:
    sock.sendall(serialization.encode_compaction_result(tables, segment_count))


def recv_compaction_result(
    sock: socket.socket, segment_count: int
) -> list[ProcessTable]:
    return serialization.decode_process_tables(
        recv_sized_payload(sock), segment_count
    )


def send_read_request(sock: socket.socket, address: int, length: int) -> None:
    sock.sendall(serialization.encode_read_request(address, length))


def send_write_request(
    sock: socket.socket, address: int, length: int, value: str | bytes
) -> None:
    sock.sendall(serialization.encode_write_request(address, length, value))


def send_table_request(sock: socket.socket, pid: int) -> None:
    sock.sendall(serialization.encode_table_request(pid))


def send_segment_base(sock: socket.socket, base: int) -> None:
    sock.sendall(serialization.encode_segment_base(base))