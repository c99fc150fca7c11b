"""TCP server and client helpers used to link the modules together."""

from __future__ import annotations

import logging
import socket
from enum import IntEnum
from typing import Mapping, Optional

from segmem.protocol import recv_opcode

log = logging.getLogger(__name__)


class Module(IntEnum):
    """The modules of the system."""

    KERNEL = 0
    CPU = 1
    FILESYSTEM = 2
    MEMORIA = 3


class ConnectionFailed(ConnectionError):
    """A connection could not be made or accepted."""


_CONFIG_KEYS = {
    Module.KERNEL: ("IP_KERNEL", "PUERTO_KERNEL"),
    Module.CPU: ("IP_CPU", "PUERTO_CPU"),
    Module.MEMORIA: ("IP_MEMORIA", "PUERTO_MEMORIA"),
    Module.FILESYSTEM: ("IP_FILESYSTEM", "PUERTO_FILESYSTEM"),
}


# ------------------------------ server ------------------------------ #

def start_server(ip: Optional[str], port: str | int, name: str) -> socket.socket:
    """Open a listening TCP socket on ``ip:port``."""
    info = socket.getaddrinfo(
        ip, str(port), socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
    )
    family, socktype, proto, _, address = info[0]
    server = socket.socket(family, socktype, proto)
    try:
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind(address)
        server.listen(socket.SOMAXCONN)
    except OSError:
        server.close()
        raise
    log.info("Listening on %s:%s (%s)", ip, port, name)
    return server


def accept_client(server: socket.socket, name: str) -> socket.socket:
    """Wait for and return the next client connection."""
    log.debug("Waiting for a client")
    try:
        client, _ = server.accept()
    except OSError as exc:
        log.error("%s failed to accept an incoming connection", name)
        raise ConnectionFailed(f"{name} failed to accept a connection") from exc
    log.debug("Client connected (to %s)", name)
    return client


def receive_operation(sock: socket.socket) -> int:
    """Read the next operation code; closes the socket on disconnection."""
    return recv_opcode(sock)


def prepare_server(
    module_name: str, config: Mapping[str, object], local: bool = False
) -> socket.socket:
    """Start a server on this host's address and the configured port."""
    ip = local_ip() if local else network_ip()
    server = start_server(ip, str(config["PUERTO_ESCUCHA"]), module_name)
    log.info("Server ready to receive clients")
    return server


# ------------------------------ client ------------------------------ #

def create_connection(server_name: str, ip: str, port: str | int) -> socket.socket:
    """Connect to ``ip:port``; raise :class:`ConnectionFailed` on failure."""
    try:
        info = socket.getaddrinfo(
            ip, str(port), socket.AF_UNSPEC, socket.SOCK_STREAM, 0,
            socket.AI_PASSIVE,
        )
    except socket.gaierror as exc:
        log.error("Cannot resolve %s:%s", ip, port)
        raise ConnectionFailed(f"cannot resolve {ip}:{port}") from exc
    family, socktype, proto, _, address = info[0]
    try:
        sock = socket.socket(family, socktype, proto)
    except OSError as exc:
        log.error("Error creating the socket for %s:%s", ip, port)
        raise ConnectionFailed(f"cannot create a socket for {ip}:{port}") from exc
    try:
        sock.connect(address)
    except OSError as exc:
        sock.close()
        log.error("Error connecting (to %s)", server_name)
        raise ConnectionFailed(f"cannot connect to {server_name}") from exc
    log.info("Client connected on %s:%s (to %s)", ip, port, server_name)
    return sock


def connect_to(module: Module, config: Mapping[str, object]) -> socket.socket:
    """Connect to the module whose address the configuration names."""
    module = Module(module)
    ip_key, port_key = _CONFIG_KEYS[module]
    ip = str(config[ip_key])
    port = str(config[port_key])
    log.info("Client will connect to %s:%s", ip, port)
    sock = create_connection(module.name, ip, port)
    log.info("Connected to module %s", module.name)
    return sock


# ------------------------------ addresses ------------------------------ #

def _source_address(target: tuple[str, int]) -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        probe.connect(target)
        return probe.getsockname()[0]


def network_ip() -> str:
    """Address of the interface that routes to the outside network."""
    return _source_address(("8.8.8.8", 80))


def local_ip() -> str:
    """Loopback address used for local connections."""
    return _source_address(("127.0.0.2", 12345))