"""TCP transport: package framing, handshakes, client and server sockets."""

from __future__ import annotations

import logging
import socket
import struct
import time

from .packet import Package
from .protocol import HsCode

__all__ = [
    "send_package",
    "receive_package",
    "receive_op_code",
    "send_message",
    "create_connection",
    "start_server",
    "wait_client",
    "handshake_server_valid",
    "handshake_server_get_type",
    "handshake_client_valid",
]

logger = logging.getLogger(__name__)

_HS_INT = struct.Struct("<i")
_SIZE = struct.Struct("<I")
_ACCEPT_ATTEMPTS = 2
_ACCEPT_RETRY_DELAY = 1.0


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes or raise ConnectionError on end of stream."""
    chunks = bytearray()
    while len(chunks) < size:
        chunk = sock.recv(size - len(chunks))
        if not chunk:
            raise ConnectionError(
                f"connection closed after {len(chunks)} of {size} bytes"
            )
        chunks += chunk
    return bytes(chunks)


def _send_int(sock: socket.socket, value: int) -> None:
    sock.sendall(_HS_INT.pack(int(value)))


def _recv_int(sock: socket.socket) -> int:
    return _HS_INT.unpack(_recv_exact(sock, _HS_INT.size))[0]


def send_package(sock: socket.socket, package: Package) -> None:
    """Send a package in its wire form."""
    try:
        sock.sendall(package.encode())
    except OSError:
        logger.error("Error al enviar el paquete")
        raise


def receive_package(sock: socket.socket) -> Package:
    """Receive one whole package from the socket."""
    code = _recv_exact(sock, 1)[0]
    (size,) = _SIZE.unpack(_recv_exact(sock, _SIZE.size))
    payload = _recv_exact(sock, size) if size else b""
    return Package(code, bytearray(payload))


def receive_op_code(sock: socket.socket) -> int:
    """Receive a single operation code byte; ``HSFAIL`` if the peer is gone."""
    try:
        data = sock.recv(1)
    except OSError:
        return int(HsCode.HSFAIL)
    if not data:
        return int(HsCode.HSFAIL)
    return data[0]


def send_message(sock: socket.socket, text: str, op_code: int) -> None:
    """Send a package holding a single text item."""
    send_package(sock, Package(op_code).add_string(text))


def create_connection(host: str, port: int | str) -> socket.socket:
    """Open an IPv4 TCP connection to ``host:port``."""
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
    except OSError as exc:
        logger.error("Error en getaddrinfo")
        raise ConnectionError(f"cannot resolve {host}:{port}") from exc
    family, socktype, proto, _, address = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.connect(address)
    except OSError as exc:
        sock.close()
        logger.error("Error al conectar al servidor")
        raise ConnectionError(f"cannot connect to {host}:{port}") from exc
    logger.info("Conexión exitosa al servidor en %s:%s", host, port)
    return sock


def start_server(port: int | str) -> socket.socket:
    """Listen for IPv4 TCP connections on every interface at ``port``."""
    try:
        infos = socket.getaddrinfo(
            None, port, socket.AF_INET, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        )
    except OSError as exc:
        logger.error("Error en getaddrinfo")
        raise ConnectionError(f"cannot resolve port {port}") from exc
    family, socktype, proto, _, address = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(address)
        sock.listen(socket.SOMAXCONN)
    except OSError as exc:
        sock.close()
        logger.error("Error al iniciar el servidor en el puerto %s", port)
        raise ConnectionError(f"cannot listen on port {port}") from exc
    logger.info("Servidor escuchando en el puerto: %s", port)
    return sock


def wait_client(server_sock: socket.socket) -> socket.socket:
    """Accept one client, trying twice with a one second pause between."""
    for attempt in range(_ACCEPT_ATTEMPTS):
        try:
            client, _ = server_sock.accept()
        except OSError:
            if attempt + 1 < _ACCEPT_ATTEMPTS:
                time.sleep(_ACCEPT_RETRY_DELAY)
            continue
        return client
    logger.error("Error al aceptar un cliente")
    raise ConnectionError("no client accepted")


def handshake_server_valid(sock: socket.socket, origin: int) -> bool:
    """Answer a client's handshake; True if the client confirms it."""
    return handshake_server_get_type(sock, origin) is not None


def handshake_server_get_type(sock: socket.socket, origin: int) -> int | None:
    """Answer a client's handshake and return the client's module code.

    Returns None when the client rejects the connection.
    """
    client_type = _recv_int(sock)
    _send_int(sock, origin)
    confirmation = _recv_int(sock)
    if confirmation == HsCode.HSOK:
        logger.info("Handshake valido - Conexion aceptada")
        return client_type
    logger.warning("Handshake invalido - Conexion rechazada")
    return None


def handshake_client_valid(sock: socket.socket, origin: int, expected: int) -> bool:
    """Introduce ourselves to a server and check it is the expected module."""
    _send_int(sock, origin)
    server_type = _recv_int(sock)
    valid = server_type == expected
    if valid:
        logger.info("Handshake valido - Conexion aceptada")
    else:
        logger.warning("Handshake invalido - Conexion rechazada")
    _send_int(sock, HsCode.HSOK if valid else HsCode.HSFAIL)
    return valid