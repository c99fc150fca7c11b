"""Entry point of the memory server."""

from __future__ import annotations

import logging
import socket
import sys
import threading
from typing import Optional, Sequence

from segmem.config import ConfigError, MemoryConfig, load_config
from segmem.handlers import RequestHandler
from segmem.memory import MemoryManager, SegmentZeroTooLarge
from segmem.net import accept_client, network_ip, start_server
from segmem.protocol import recv_int

log = logging.getLogger(__name__)

DEFAULT_CONFIG = "memoria.config"
LOG_FILE = "memoria.log"


def _close(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


def run(config: MemoryConfig, host: Optional[str] = None) -> MemoryManager:
    """Accept CPU, filesystem and kernel, then serve them until the kernel leaves."""
    clients: list[socket.socket] = []
    try:
        with start_server(host, config.port, "MEMORIA") as listener:
            for _ in ("CPU", "FILESYSTEM", "KERNEL"):
                clients.append(accept_client(listener, "MEMORIA"))
        cpu, filesystem, kernel = clients

        max_segment_size = recv_int(cpu)
        log.info("Maximum segment size: %d", max_segment_size)

        manager = MemoryManager(config, max_segment_size)
        handler = RequestHandler(manager)
        workers = [
            threading.Thread(
                target=handler.serve_cpu, args=(cpu,), name="memory-cpu", daemon=True
            ),
            threading.Thread(
                target=handler.serve_filesystem,
                args=(filesystem,),
                name="memory-filesystem",
                daemon=True,
            ),
        ]
        for worker in workers:
            worker.start()
        handler.serve_kernel(kernel)
        return manager
    finally:
        for client in clients:
            _close(client)


def _configure_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="[%(levelname)s] %(asctime)s MEMORIA %(message)s",
        handlers=[logging.StreamHandler(), logging.FileHandler(LOG_FILE)],
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the memory server with the configuration file named on the command line."""
    args = list(sys.argv[1:] if argv is None else argv)
    _configure_logging()
    if len(args) > 1:
        log.error("Wrong number of arguments. Usage: memoria [CONFIG_PATH]")
        return 1
    path = args[0] if args else DEFAULT_CONFIG
    try:
        config = load_config(path)
    except ConfigError as exc:
        log.error("%s", exc)
        return 1
    try:
        run(config, network_ip())
    except SegmentZeroTooLarge:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())