import socket
import struct

import pytest

from segmem import serialization
from segmem.config import Algorithm, MemoryConfig
from segmem.handlers import RequestHandler
from segmem.memory import MemoryManager, MemoryManagerError, ProcessNotFound
from segmem.models import MemoryReply, Segment, find_segment_by_id
from segmem.serialization import OpCode

INT = struct.Struct("<i")
SIZE = struct.Struct("<Q")


class Replies:
    def __init__(self, data):
        self.data = data
        self.offset = 0

    def take(self, size):
        chunk = self.data[self.offset:self.offset + size]
        assert len(chunk) == size
        self.offset += size
        return chunk

    def int(self):
        return INT.unpack(self.take(INT.size))[0]

    def sized(self):
        return self.take(SIZE.unpack(self.take(SIZE.size))[0])

    def rest(self):
        return self.data[self.offset:]


def ints(*values):
    return b"".join(INT.pack(v) for v in values)


def make_handler(memory_delay=0, compaction_delay=0):
    config = MemoryConfig(
        port=0,
        memory_size=64,
        segment_zero_size=8,
        segment_count=4,
        memory_delay=memory_delay,
        compaction_delay=compaction_delay,
        algorithm=Algorithm.FIRST,
    )
    manager = MemoryManager(config, 32)
    sleeps = []
    return RequestHandler(manager, sleep=sleeps.append), manager, sleeps


def session(serve, requests):
    client, server = socket.socketpair()
    try:
        with client:
            client.sendall(requests)
            client.shutdown(socket.SHUT_WR)
            serve(server)
            chunks = []
            while True:
                chunk = client.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
    finally:
        server.close()
    return Replies(b"".join(chunks))


def fragmented(manager):
    manager.create_process_table(1)
    manager.create_segment(1, 1, 16)
    manager.create_segment(1, 2, 16)
    manager.create_segment(1, 3, 24)
    manager.delete_segment(1, 1)
    manager.delete_segment(1, 3)


# ------------------------------ kernel ------------------------------ #

def test_kernel_announces_segment_count():
    handler, manager, _ = make_handler()
    replies = session(handler.serve_kernel, b"")
    assert replies.int() == manager.config.segment_count
    assert replies.rest() == b""


def test_new_process_table():
    handler, manager, _ = make_handler()
    replies = session(handler.serve_kernel, serialization.encode_table_request(7))
    replies.int()
    segments = serialization.decode_segment_table(replies.sized())
    assert segments == [Segment(0, 0, 8)] + [Segment(i, -1, 0) for i in (1, 2, 3)]
    assert manager.find_process(7).segments == segments


def test_create_segment_sends_base():
    handler, manager, _ = make_handler()
    requests = serialization.encode_table_request(1) + (
        serialization.encode_create_segment_request(1, 2, 16)
    )
    replies = session(handler.serve_kernel, requests)
    replies.int()
    replies.sized()
    assert replies.int() == MemoryReply.CREACION
    assert replies.int() == 8
    segment = manager.find_segment(1, 2)
    assert segment == Segment(2, 8, 16)
    assert manager.holes[0].base == segment.base + segment.size


def test_create_segment_out_of_memory():
    handler, manager, _ = make_handler()
    requests = serialization.encode_table_request(1) + (
        serialization.encode_create_segment_request(1, 1, 100)
    )
    replies = session(handler.serve_kernel, requests)
    replies.int()
    replies.sized()
    assert replies.int() == MemoryReply.OUT_OF_MEMORY
    assert replies.rest() == b""
    assert manager.find_segment(1, 1) == Segment(1, -1, 0)


def test_create_segment_asks_for_compaction():
    handler, manager, _ = make_handler()
    fragmented(manager)
    replies = session(
        handler.serve_kernel, serialization.encode_create_segment_request(1, 1, 30)
    )
    replies.int()
    assert replies.int() == MemoryReply.COMPACTACION
    assert replies.rest() == b""


def test_compaction_moves_data_and_replies_tables():
    handler, manager, sleeps = make_handler(compaction_delay=250)
    fragmented(manager)
    manager.write(manager.find_segment(1, 2).base, b"abcdefghijklmnop")
    replies = session(handler.serve_kernel, ints(OpCode.SOLICITUD_COMPACTACION))
    replies.int()
    tables = serialization.decode_process_tables(replies.sized(), 4)
    assert [t.pid for t in tables] == [1]
    moved = find_segment_by_id(tables[0].segments, 2)
    assert moved.base == 8
    assert manager.read(moved.base, moved.size) == b"abcdefghijklmnop"
    assert len(manager.holes) == 1
    assert manager.holes[0].base == moved.base + moved.size
    assert manager.holes[0].end() == manager.config.memory_size
    assert sleeps == [0.25]


def test_delete_segment_replies_updated_table():
    handler, manager, _ = make_handler()
    requests = (
        serialization.encode_table_request(1)
        + serialization.encode_create_segment_request(1, 1, 16)
        + serialization.encode_delete_segment_request(1, 1)
    )
    replies = session(handler.serve_kernel, requests)
    replies.int()
    replies.sized()
    replies.int()
    replies.int()
    segments = serialization.decode_segment_table(replies.sized())
    assert find_segment_by_id(segments, 1) == Segment(1, -1, 0)
    assert len(manager.holes) == 1
    assert manager.holes[0].base == 8
    assert manager.holes[0].end() == manager.config.memory_size


def test_free_memory_forgets_process():
    handler, manager, _ = make_handler()
    requests = (
        serialization.encode_table_request(3)
        + serialization.encode_create_segment_request(3, 1, 16)
        + ints(OpCode.SOLICITUD_LIBERAR_MEMORIA, 3)
    )
    replies = session(handler.serve_kernel, requests)
    replies.int()
    replies.sized()
    replies.int()
    replies.int()
    assert replies.rest() == b""
    assert manager.processes == []
    assert manager.segments == [manager.segment_zero]


def test_unknown_kernel_opcode_is_ignored():
    handler, manager, _ = make_handler()
    replies = session(
        handler.serve_kernel, ints(99) + serialization.encode_table_request(5)
    )
    replies.int()
    segments = serialization.decode_segment_table(replies.sized())
    assert segments[0] == manager.segment_zero
    assert [t.pid for t in manager.processes] == [5]


def test_unknown_process_raises():
    handler, _, _ = make_handler()
    with pytest.raises(ProcessNotFound):
        session(
            handler.serve_kernel, serialization.encode_delete_segment_request(1, 9)
        )


# ------------------------------ cpu ------------------------------ #

def test_cpu_write():
    handler, manager, _ = make_handler()
    requests = serialization.encode_write_request(10, 4, b"hola") + ints(1)
    replies = session(handler.serve_cpu, requests)
    assert replies.sized() == b"OK\0"
    assert manager.read(10, 4) == b"hola"


def test_cpu_read():
    handler, manager, _ = make_handler()
    manager.write(20, b"mundo")
    replies = session(
        handler.serve_cpu, serialization.encode_read_request(20, 5) + ints(1)
    )
    assert serialization.decode_string(replies.sized()) == "mundo"
    assert replies.rest() == b""


def test_cpu_read_stops_at_nul():
    handler, manager, _ = make_handler()
    manager.write(0, b"ab\0cd")
    replies = session(
        handler.serve_cpu, serialization.encode_read_request(0, 5) + ints(1)
    )
    assert replies.sized() == b"ab\0"


def test_cpu_access_waits_memory_delay():
    handler, _, sleeps = make_handler(memory_delay=100)
    session(handler.serve_cpu, serialization.encode_read_request(0, 1) + ints(1))
    assert sleeps == [0.1]


def test_cpu_unknown_opcode_then_write():
    handler, manager, _ = make_handler()
    requests = ints(42) + serialization.encode_write_request(0, 2, b"xy") + ints(1)
    replies = session(handler.serve_cpu, requests)
    assert replies.sized() == b"OK\0"
    assert manager.read(0, 2) == b"xy"


def test_cpu_disconnect_ends_service():
    handler, _, _ = make_handler()
    replies = session(handler.serve_cpu, b"")
    assert replies.rest() == b""


def test_cpu_write_outside_memory_raises():
    handler, _, _ = make_handler()
    with pytest.raises(MemoryManagerError):
        session(
            handler.serve_cpu,
            serialization.encode_write_request(62, 4, b"over") + ints(1),
        )


# ------------------------------ filesystem ------------------------------ #

def test_filesystem_write_then_read():
    handler, manager, _ = make_handler()
    requests = (
        serialization.encode_write_request(30, 5, b"disco")
        + ints(2)
        + serialization.encode_read_request(30, 5)
        + ints(2)
    )
    replies = session(handler.serve_filesystem, requests)
    assert replies.sized() == b"OK\0"
    assert serialization.decode_string(replies.sized()) == "disco"
    assert manager.read(30, 5) == b"disco"


def test_filesystem_ignores_other_opcodes():
    handler, _, _ = make_handler()
    replies = session(
        handler.serve_filesystem,
        ints(OpCode.SOLICITUD_COMPACTACION)
        + serialization.encode_write_request(0, 1, b"z")
        + ints(2),
    )
    assert replies.sized() == b"OK\0"
    assert replies.rest() == b""