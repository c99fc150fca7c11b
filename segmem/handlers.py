"""Request loops serving the kernel, the CPU and the filesystem."""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional

from segmem.memory import MemoryManager
from segmem.models import MemoryReply
from segmem.protocol import (
    ConnectionClosed,
    recv_create_segment_request,
    recv_delete_segment_request,
    recv_exact,
    recv_int,
    recv_opcode,
    send_compaction_result,
    send_int,
    send_segment_base,
    send_segment_table,
    send_string,
)
from segmem.serialization import OpCode

log = logging.getLogger(__name__)

_Handler = Callable[[socket.socket], None]


class RequestHandler:
    """Answers the requests of the connected modules against one memory."""

    def __init__(
        self,
        manager: MemoryManager,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self.manager = manager
        self._sleep = sleep

    @property
    def config(self):
        return self.manager.config

    def _delay(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self._sleep(milliseconds / 1000)

    def _serve(
        self,
        sock: socket.socket,
        peer: str,
        handlers: dict[int, _Handler],
        on_unknown: Callable[[int], None],
    ) -> None:
        while True:
            try:
                opcode = recv_opcode(sock)
            except ConnectionClosed:
                log.error("The %s client disconnected. Stopping its service", peer)
                return
            with self.manager.lock:
                handler = handlers.get(opcode)
                if handler is None:
                    on_unknown(opcode)
                    continue
                try:
                    handler(sock)
                except ConnectionClosed:
                    log.error("The %s client disconnected mid-request", peer)
                    return

    # ------------------------------ kernel ------------------------------ #

    def serve_kernel(self, sock: socket.socket) -> None:
        """Announce the segment count, then answer kernel requests until it leaves."""
        send_int(sock, self.config.segment_count)
        handlers = {
            OpCode.SOLICITUD_TABLA_NEW: self._new_table,
            OpCode.SOLICITUD_CREACION_SEGMENTO: self._create_segment,
            OpCode.SOLICITUD_ELIMINACION_SEGMENTO: self._delete_segment,
            OpCode.SOLICITUD_COMPACTACION: self._compact,
            OpCode.SOLICITUD_LIBERAR_MEMORIA: self._free_process,
        }

        def unknown(opcode: int) -> None:
            log.error("Unknown operation %d from the kernel", opcode)

        self._serve(sock, "KERNEL", handlers, unknown)

    def _new_table(self, sock: socket.socket) -> None:
        pid = recv_int(sock)
        log.debug("Segment table requested for new process %d", pid)
        table = self.manager.create_process_table(pid)
        send_segment_table(sock, table.segments)

    def _create_segment(self, sock: socket.socket) -> None:
        pid, segment_id, size = recv_create_segment_request(sock)
        log.debug("Creation of segment %d (%d bytes) for process %d", segment_id, size, pid)
        result = self.manager.create_segment(pid, segment_id, size)
        if result.reply is MemoryReply.CREACION:
            send_segment_base(sock, result.base)
        else:
            send_int(sock, result.reply)

    def _delete_segment(self, sock: socket.socket) -> None:
        segment_id, pid = recv_delete_segment_request(sock)
        table = self.manager.delete_segment(pid, segment_id)
        send_segment_table(sock, table.segments)
        log.debug("Updated segment table sent to the kernel")

    def _compact(self, sock: socket.socket) -> None:
        tables = self.manager.compact()
        self._delay(self.config.compaction_delay)
        send_compaction_result(sock, tables, self.config.segment_count)

    def _free_process(self, sock: socket.socket) -> None:
        pid = recv_int(sock)
        self.manager.free_process(pid)

    # ------------------------------ user space ------------------------------ #

    def _read(self, sock: socket.socket, origin: str) -> None:
        address = recv_int(sock)
        length = recv_int(sock)
        pid = recv_int(sock)
        log.warning(
            "PID: %d - Accion: LEER - Direccion fisica: %d - Tamanio: %d - Origen %s",
            pid, address, length, origin,
        )
        self._delay(self.config.memory_delay)
        data = self.manager.read(address, length)
        text = data.split(b"\0", 1)[0]
        log.info("Data read from memory for %s: %r", origin, text)
        send_string(sock, text)

    def _write(self, sock: socket.socket, origin: str) -> None:
        address = recv_int(sock)
        length = recv_int(sock)
        value = recv_exact(sock, length)
        pid = recv_int(sock)
        log.warning(
            "PID: %d - Accion: ESCRIBIR - Direccion fisica: %d - Tamanio: %d - Origen %s",
            pid, address, length, origin,
        )
        self._delay(self.config.memory_delay)
        self.manager.write(address, value)
        log.info("Data written to memory for %s: %r", origin, value)
        send_string(sock, "OK")

    def serve_cpu(self, sock: socket.socket) -> None:
        """Answer CPU reads and writes until it disconnects."""
        handlers = {
            OpCode.SOLICITUD_LECTURA: lambda s: self._read(s, "CPU"),
            OpCode.SOLICITUD_ESCRITURA: lambda s: self._write(s, "CPU"),
        }

        def unknown(opcode: int) -> None:
            log.error("Unknown message %d from the CPU", opcode)

        self._serve(sock, "CPU", handlers, unknown)

    def serve_filesystem(self, sock: socket.socket) -> None:
        """Answer filesystem reads and writes until it disconnects."""
        handlers = {
            OpCode.SOLICITUD_ESCRITURA: lambda s: self._write(s, "FILESYSTEM"),
            OpCode.SOLICITUD_LECTURA: lambda s: self._read(s, "FILESYSTEM"),
        }

        def unknown(opcode: int) -> None:
            log.debug("Ignoring operation %d from the filesystem", opcode)

        self._serve(sock, "FILESYSTEM", handlers, unknown)

    def __repr__(self) -> str:
        return f"RequestHandler({self.manager!r})"


def _unused(_: Optional[object] = None) -> None:  # pragma: no cover
    return None