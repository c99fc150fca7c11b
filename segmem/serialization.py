"""Binary encoding of the messages exchanged between modules.

Integers are 32-bit little-endian, sizes are 64-bit unsigned little-endian,
and strings travel NUL-terminated and preceded by their size.
"""

from __future__ import annotations

import struct
from enum import IntEnum
from typing import Iterable, Sequence

from segmem.models import (
    CpuRegisters,
    ExecutionContext,
    MemoryReply,
    ProcessTable,
    Segment,
)

_INT = struct.Struct("<i")
_SIZE = struct.Struct("<Q")
_SEGMENT = struct.Struct("<iii")


class OpCode(IntEnum):
    """Operation codes that start a message."""

    NUMERO = 0
    INSTRUCCIONES = 1
    CONTEXTO_EJECUCION = 2
    PROCESO_DESALOJADO = 3
    STRING = 4
    SOLICITUD_TABLA_NEW = 5
    SOLICITUD_CREACION_SEGMENTO = 6
    SOLICITUD_ELIMINACION_SEGMENTO = 7
    SOLICITUD_COMPACTACION = 8
    SEGMENTOS = 9
    SOLICITUD_LECTURA = 10
    SOLICITUD_ESCRITURA = 11
    SOLICITUD_LIBERAR_MEMORIA = 12
    SOLICITUD_LECTURA_DISCO = 13
    SOLICITUD_ESCRITURA_DISCO = 14
    SOLICITUD_CREAR_ARCHIVO = 15
    SOLICITUD_TRUNCAR_ARCHIVO = 16
    SOLICITUD_ABRIR_ARCHIVO = 17
    SOLICITUD_CERRAR_ARCHIVO = 18
    RESPUESTA_FREAD = 19
    RESPUESTA_FWRITE = 20
    RESPUESTA_FOPEN = 21
    RESPUESTA_CREATE = 22
    RESPUESTA_FTRUNCATE = 23


class DecodeError(ValueError):
    """Raised when a byte stream does not hold the expected message."""


class _Reader:
    """Sequential reader over a byte buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def take(self, size: int) -> bytes:
        if size < 0 or size > self.remaining:
            raise DecodeError(
                f"need {size} bytes at offset {self.offset}, "
                f"only {self.remaining} left"
            )
        chunk = bytes(self._data[self.offset:self.offset + size])
        self.offset += size
        return chunk

    def int(self) -> int:
        return _INT.unpack(self.take(_INT.size))[0]

    def size(self) -> int:
        return _SIZE.unpack(self.take(_SIZE.size))[0]


def _cstring(text: str | bytes) -> bytes:
    raw = text.encode("utf-8") if isinstance(text, str) else bytes(text)
    return raw + b"\0"


def _from_cstring(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _header(opcode: int) -> bytes:
    return _INT.pack(int(opcode))


# ------------------------------ string lists ------------------------------ #

def encode_string_list(strings: Iterable[str]) -> bytes:
    """Each string as its size followed by its NUL-terminated bytes."""
    parts = []
    for text in strings:
        raw = _cstring(text)
        parts.append(_SIZE.pack(len(raw)))
        parts.append(raw)
    return b"".join(parts)


def _read_string_list(reader: _Reader, size: int) -> list[str]:
    end = reader.offset + size
    if size > reader.remaining:
        raise DecodeError(f"string list of {size} bytes exceeds the data")
    strings = []
    while reader.offset < end:
        length = reader.size()
        if reader.offset + length > end:
            raise DecodeError("string runs past the end of its list")
        strings.append(_from_cstring(reader.take(length)))
    return strings


def decode_string_list(data: bytes) -> list[str]:
    """Inverse of :func:`encode_string_list`."""
    return _read_string_list(_Reader(data), len(data))


def encode_instructions(instructions: Sequence[str]) -> bytes:
    """INSTRUCCIONES message: opcode, list size, string list."""
    body = encode_string_list(instructions)
    return _header(OpCode.INSTRUCCIONES) + _SIZE.pack(len(body)) + body


# ------------------------------ execution context ------------------------------ #

def encode_context(context: ExecutionContext) -> bytes:
    """CONTEXTO_EJECUCION message with its payload size."""
    instructions = encode_string_list(context.instructions)
    segments = encode_segment_table(context.segments)
    payload = b"".join(
        (
            _INT.pack(context.pid),
            _INT.pack(context.pc),
            context.registers.to_bytes(),
            _SIZE.pack(len(instructions)),
            instructions,
            _SIZE.pack(len(segments)),
            segments,
        )
    )
    return _header(OpCode.CONTEXTO_EJECUCION) + _SIZE.pack(len(payload)) + payload


def decode_context(payload: bytes) -> ExecutionContext:
    """Context from the payload that follows opcode and size."""
    reader = _Reader(payload)
    pid = reader.int()
    pc = reader.int()
    registers = CpuRegisters.from_bytes(reader.take(CpuRegisters.SIZE))
    instructions = _read_string_list(reader, reader.size())
    segments = decode_segment_table(reader.take(reader.size()))
    return ExecutionContext(
        pid=pid,
        pc=pc,
        registers=registers,
        instructions=instructions,
        segments=segments,
    )


# ------------------------------ eviction ------------------------------ #

def encode_eviction(reason: int, params: Sequence[str]) -> bytes:
    """PROCESO_DESALOJADO message: reason and its parameters."""
    body = encode_string_list(params)
    payload = _INT.pack(int(reason)) + _SIZE.pack(len(body)) + body
    return _header(OpCode.PROCESO_DESALOJADO) + _SIZE.pack(len(payload)) + payload


def decode_eviction(payload: bytes) -> tuple[int, list[str]]:
    """Reason and parameter list from an eviction payload."""
    reader = _Reader(payload)
    reason = reader.int()
    params = _read_string_list(reader, reader.size())
    return reason, params


# ------------------------------ strings ------------------------------ #

def encode_string(text: str | bytes) -> bytes:
    """Size of the NUL-terminated string, then the string."""
    raw = _cstring(text)
    return _SIZE.pack(len(raw)) + raw


def decode_string(payload: bytes) -> str:
    """Text of a string payload, up to its first NUL."""
    return _from_cstring(bytes(payload))


# ------------------------------ segment tables ------------------------------ #

def encode_segment_table(segments: Iterable[Segment]) -> bytes:
    """Each segment as id, base and size."""
    return b"".join(_SEGMENT.pack(s.id, s.base, s.size) for s in segments)


def decode_segment_table(data: bytes) -> list[Segment]:
    """Inverse of :func:`encode_segment_table`."""
    if len(data) % _SEGMENT.size:
        raise DecodeError(
            f"segment table length {len(data)} is not a multiple of "
            f"{_SEGMENT.size}"
        )
    return [Segment(*fields) for fields in _SEGMENT.iter_unpack(bytes(data))]


def encode_segments(segments: Iterable[Segment]) -> bytes:
    """Segment table preceded by its size."""
    body = encode_segment_table(segments)
    return _SIZE.pack(len(body)) + body


def encode_process_tables(
    tables: Iterable[ProcessTable], segment_count: int
) -> bytes:
    """Each process as its pid followed by its fixed-size segment table."""
    parts = []
    for table in tables:
        if len(table.segments) != segment_count:
            raise ValueError(
                f"process {table.pid} has {len(table.segments)} segments, "
                f"expected {segment_count}"
            )
        parts.append(_INT.pack(table.pid))
        parts.append(encode_segment_table(table.segments))
    return b"".join(parts)


def decode_process_tables(data: bytes, segment_count: int) -> list[ProcessTable]:
    """Inverse of :func:`encode_process_tables`."""
    reader = _Reader(data)
    table_size = _SEGMENT.size * segment_count
    tables = []
    while reader.remaining:
        pid = reader.int()
        segments = decode_segment_table(reader.take(table_size))
        tables.append(ProcessTable(pid, segments))
    return tables


def encode_compaction_result(
    tables: Iterable[ProcessTable], segment_count: int
) -> bytes:
    """All process tables preceded by their total size."""
    body = encode_process_tables(tables, segment_count)
    return _SIZE.pack(len(body)) + body


# ------------------------------ requests ------------------------------ #

def encode_table_request(pid: int) -> bytes:
    return _header(OpCode.SOLICITUD_TABLA_NEW) + _INT.pack(pid)


def encode_segment_base(base: int) -> bytes:
    """Reply to a successful creation: CREACION and the new base."""
    return _INT.pack(MemoryReply.CREACION) + _INT.pack(base)


def encode_create_segment_request(pid: int, segment_id: int, size: int) -> bytes:
    return (
        _header(OpCode.SOLICITUD_CREACION_SEGMENTO)
        + _INT.pack(pid)
        + _INT.pack(segment_id)
        + _INT.pack(size)
    )


def decode_create_segment_request(payload: bytes) -> tuple[int, int, int]:
    """pid, segment id and size from a creation request payload."""
    reader = _Reader(payload)
    return reader.int(), reader.int(), reader.int()


def encode_delete_segment_request(segment_id: int, pid: int) -> bytes:
    return (
        _header(OpCode.SOLICITUD_ELIMINACION_SEGMENTO)
        + _INT.pack(segment_id)
        + _INT.pack(pid)
    )


def decode_delete_segment_request(payload: bytes) -> tuple[int, int]:
    """Segment id and pid from a deletion request payload."""
    reader = _Reader(payload)
    return reader.int(), reader.int()


def encode_read_request(address: int, length: int) -> bytes:
    return _header(OpCode.SOLICITUD_LECTURA) + _INT.pack(address) + _INT.pack(length)


def encode_write_request(address: int, length: int, value: str | bytes) -> bytes:
    """Write request carrying exactly ``length`` bytes of ``value``."""
    if length < 0:
        raise ValueError("length must not be negative")
    raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
    data = raw[:length].ljust(length, b"\0")
    return (
        _header(OpCode.SOLICITUD_ESCRITURA)
        + _INT.pack(address)
        + _INT.pack(length)
        + data
    )


# ------------------------------ numbers ------------------------------ #

def encode_number(number: int) -> bytes:
    return _header(OpCode.NUMERO) + _INT.pack(number)


def decode_number(payload: bytes) -> int:
    return _Reader(payload).int()