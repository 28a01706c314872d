"""The memory server: accepts kernel and CPU connections and serves them."""

from __future__ import annotations

import argparse
import logging
import socket
import sys
import threading
import time
from typing import Optional

from .config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from .cpu_ops import process_cpu_requests
from .kernel_ops import process_kernel_request
from .memory import MemoryManager
from .protocol import HsCode
from .transport import handshake_server_get_type, start_server

__all__ = ["MemoryServer", "main"]

logger = logging.getLogger(__name__)

_ACCEPT_POLL = 0.2
_LOG_FORMAT = "[%(levelname)s] %(asctime)s %(name)s: %(message)s"
_LOG_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class MemoryServer:
    """Listens on a port and serves each client in its own thread."""

    def __init__(self, manager: MemoryManager, port: int | str) -> None:
        self.manager = manager
        self.port = port
        self._server: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._accepting = threading.Event()
        self._connections: dict[threading.Thread, socket.socket] = {}
        self._connections_lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        """The address the server is bound to."""
        if self._server is None:
            raise RuntimeError("server is not running")
        return self._server.getsockname()

    @property
    def running(self) -> bool:
        """True while the server accepts connections."""
        return self._accept_thread is not None and self._accept_thread.is_alive()

    def start(self) -> None:
        """Bind the port and start accepting clients in the background.

        Raises ConnectionError when the port cannot be listened on.
        """
        if self._server is not None:
            raise RuntimeError("server already started")
        self._server = start_server(self.port)
        self._server.settimeout(_ACCEPT_POLL)
        self._accepting.set()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="memoria-server", daemon=True
        )
        self._accept_thread.start()

    def _accept_loop(self) -> None:
        server = self._server
        while self._accepting.is_set():
            try:
                client, _ = server.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            client.settimeout(None)
            thread = threading.Thread(target=self._serve, args=(client,), daemon=True)
            with self._connections_lock:
                self._connections[thread] = client
            thread.start()

    def _serve(self, sock: socket.socket) -> None:
        try:
            self.handle_client(sock)
        finally:
            with self._connections_lock:
                self._connections.pop(threading.current_thread(), None)

    def handle_client(self, sock: socket.socket) -> None:
        """Handshake with a client and serve it by module type; closes ``sock``."""
        with sock:
            try:
                module = handshake_server_get_type(sock, HsCode.HSMEMORIA)
                if module == HsCode.HSKERNEL:
                    logger.info("Thread Memoria Client: Se conecto el modulo Kernel")
                    logger.info("## Kernel Conectado - FD del socket: %d", sock.fileno())
                    process_kernel_request(sock, self.manager)
                    logger.info(
                        "Thread Memoria Client: Se desconectara el modulo Kernel"
                    )
                elif module == HsCode.HSCPU:
                    logger.info("Thread Memoria Client: Se conecto el modulo CPU")
                    process_cpu_requests(sock, self.manager)
                    logger.info("Thread Memoria Client: Se desconectara el modulo CPU")
                else:
                    logger.warning("Thread Memoria Client: Cliente desconocido")
            except (OSError, ValueError, IndexError) as exc:
                logger.error("Thread Memoria Client: error atendiendo cliente: %s", exc)

    def stop(self) -> None:
        """Stop accepting, disconnect clients and wait for every thread."""
        self._accepting.clear()
        if self._accept_thread is not None:
            self._accept_thread.join()
        if self._server is not None:
            self._server.close()
            self._server = None
        with self._connections_lock:
            connections = list(self._connections.items())
        for _, sock in connections:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        for thread, _ in connections:
            thread.join()
        logger.info("Thread Memoria Server: finalizado")


def _attach_logging(level_name: str, log_file: str) -> list[logging.Handler]:
    package_logger = logging.getLogger(__package__ or "memoria")
    package_logger.setLevel(_LOG_LEVELS.get(level_name.upper(), logging.INFO))
    formatter = logging.Formatter(_LOG_FORMAT)
    handlers: list[logging.Handler] = [
        logging.FileHandler(log_file, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    return handlers


def _detach_logging(handlers: list[logging.Handler]) -> None:
    package_logger = logging.getLogger(__package__ or "memoria")
    for handler in handlers:
        package_logger.removeHandler(handler)
        handler.close()


def main(argv: Optional[list[str]] = None) -> int:
    """Run the memory module until interrupted; returns the exit status."""
    parser = argparse.ArgumentParser(prog="memoria", description="Memory module server.")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--log-file", default="memoria.log")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"memoria: {exc}", file=sys.stderr)
        return 1

    handlers = _attach_logging(config.log_level, args.log_file)
    try:
        try:
            manager = MemoryManager(config)
        except ValueError as exc:
            logger.error("No se pudo inicializar la memoria: %s", exc)
            return 1

        server = MemoryServer(manager, config.listen_port)
        try:
            server.start()
        except ConnectionError as exc:
            logger.error("No se pudo iniciar el servidor: %s", exc)
            return 1

        try:
            while server.running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.warning("Iniciando fin del modulo por signal de apagado")
        finally:
            server.stop()
        return 0
    finally:
        _detach_logging(handlers)


if __name__ == "__main__":
    sys.exit(main())