import socket
import struct
import threading
import time

from segmem import serialization
from segmem import server as memory_server
from segmem.config import Algorithm, MemoryConfig
from segmem.memory import SegmentZeroTooLarge
from segmem.models import MemoryReply, Segment
from segmem.protocol import (
    recv_int,
    recv_segment_table,
    recv_string,
    send_create_segment_request,
    send_int,
    send_read_request,
    send_table_request,
)

INT = struct.Struct("<i")


def free_port():
    with socket.socket() as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


def connect(port):
    deadline = time.monotonic() + 5
    while True:
        try:
            return socket.create_connection(("127.0.0.1", port), timeout=5)
        except ConnectionRefusedError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.02)


class Runner(threading.Thread):
    def __init__(self, config):
        super().__init__(daemon=True)
        self.config = config
        self.result = None
        self.error = None

    def run(self):
        try:
            self.result = memory_server.run(self.config, "127.0.0.1")
        except Exception as exc:
            self.error = exc


def make_config(port):
    return MemoryConfig(
        port=port,
        memory_size=64,
        segment_zero_size=8,
        segment_count=4,
        memory_delay=0,
        compaction_delay=0,
        algorithm=Algorithm.BEST,
    )


def test_run_serves_all_modules():
    port = free_port()
    runner = Runner(make_config(port))
    runner.start()
    cpu = connect(port)
    fs = connect(port)
    kernel = connect(port)
    try:
        send_int(cpu, 32)
        assert recv_int(kernel) == 4

        send_table_request(kernel, 1)
        segments = recv_segment_table(kernel)
        assert segments[0] == Segment(0, 0, 8)

        send_create_segment_request(kernel, 1, 1, 16)
        assert recv_int(kernel) == MemoryReply.CREACION
        base = recv_int(kernel)
        assert base == 8

        cpu.sendall(serialization.encode_write_request(base, 4, b"dato") + INT.pack(1))
        assert recv_string(cpu) == "OK"

        send_read_request(cpu, base, 4)
        send_int(cpu, 1)
        assert recv_string(cpu) == "dato"

        send_read_request(fs, base, 4)
        send_int(fs, 1)
        assert recv_string(fs) == "dato"
    finally:
        kernel.close()
    runner.join(5)
    cpu.close()
    fs.close()
    assert not runner.is_alive()
    assert runner.error is None
    assert runner.result.read(base, 4) == b"dato"


def test_run_rejects_oversized_segment_zero():
    port = free_port()
    runner = Runner(make_config(port))
    runner.start()
    cpu = connect(port)
    fs = connect(port)
    kernel = connect(port)
    try:
        send_int(cpu, 4)
        runner.join(5)
    finally:
        for sock in (cpu, fs, kernel):
            sock.close()
    assert not runner.is_alive()
    assert isinstance(runner.error, SegmentZeroTooLarge)


def test_main_rejects_extra_arguments(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert memory_server.main(["one.config", "two.config"]) == 1


def test_main_missing_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert memory_server.main([str(tmp_path / "missing.config")]) == 1


def test_main_invalid_algorithm(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "memoria.config"
    path.write_text(
        "PUERTO_ESCUCHA=8002\n"
        "TAM_MEMORIA=4096\n"
        "TAM_SEGMENTO_0=128\n"
        "CANT_SEGMENTOS=16\n"
        "RETARDO_MEMORIA=1000\n"
        "RETARDO_COMPACTACION=60000\n"
        "ALGORITMO_ASIGNACION=RANDOM\n",
        encoding="utf-8",
    )
    assert memory_server.main([str(path)]) == 1