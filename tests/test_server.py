import socket
import threading

import pytest

from memoria.config import MemoryConfig
from memoria.memory import MemoryManager, ThreadContext
from memoria.packet import Package, decode_uint32
from memoria.protocol import HsCode, OpCode
from memoria.server import MemoryServer, main
from memoria.transport import (
    create_connection,
    handshake_client_valid,
    receive_package,
    send_package,
)


@pytest.fixture
def manager():
    config = MemoryConfig(
        listen_port="0",
        filesystem_ip="127.0.0.1",
        filesystem_port="0",
        memory_size=128,
        instructions_path=".",
        response_delay=0,
        scheme="DINAMICAS",
        search_algorithm="FIRST",
    )
    mgr = MemoryManager(config)
    mgr.add_thread(ThreadContext(pid=3, tid=0, size=32, base=0, limit=31, pc=2))
    mgr.add_thread(ThreadContext(pid=3, tid=1, size=32, base=0, limit=31))
    return mgr


def _run_handle_client(server, sock):
    worker = threading.Thread(target=server.handle_client, args=(sock,))
    worker.start()
    return worker


def test_handle_client_serves_cpu(manager):
    server = MemoryServer(manager, 0)
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    worker = _run_handle_client(server, server_side)
    try:
        assert handshake_client_valid(client_side, HsCode.HSCPU, HsCode.HSMEMORIA)
        send_package(
            client_side, Package(OpCode.OBTENER_CONTEXTO).add_int(3).add_int(0)
        )
        reply = receive_package(client_side)
        assert reply.op_code == OpCode.PCONTEXTO
        values = [decode_uint32(item) for item in reply.items()]
        assert values[0:2] == [0, 31]
        assert values[-1] == 2

        send_package(client_side, Package(OpCode.MENSAJE))
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert client_side.recv(1) == b""
    finally:
        client_side.close()


def test_handle_client_unknown_module_closes(manager):
    server = MemoryServer(manager, 0)
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    worker = _run_handle_client(server, server_side)
    try:
        assert handshake_client_valid(client_side, HsCode.HSFS, HsCode.HSMEMORIA)
        worker.join(timeout=5)
        assert client_side.recv(1) == b""
    finally:
        client_side.close()


def test_handle_client_rejected_handshake(manager):
    server = MemoryServer(manager, 0)
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    worker = _run_handle_client(server, server_side)
    try:
        assert not handshake_client_valid(client_side, HsCode.HSCPU, HsCode.HSKERNEL)
        worker.join(timeout=5)
        assert not worker.is_alive()
        assert client_side.recv(1) == b""
    finally:
        client_side.close()


def test_server_serves_kernel_over_tcp(manager):
    server = MemoryServer(manager, 0)
    server.start()
    try:
        assert server.running
        port = server.address[1]
        with create_connection("127.0.0.1", port) as sock:
            sock.settimeout(5)
            assert handshake_client_valid(sock, HsCode.HSKERNEL, HsCode.HSMEMORIA)
            send_package(sock, Package(OpCode.FIN_HILO).add_int(3).add_int(1))
            assert receive_package(sock).op_code == OpCode.SUCCESS
        assert manager.find_thread(3, 1) is None
        assert manager.find_thread(3, 0) is not None
    finally:
        server.stop()
    assert not server.running


def test_stop_disconnects_idle_cpu_client(manager):
    server = MemoryServer(manager, 0)
    server.start()
    sock = create_connection("127.0.0.1", server.address[1])
    sock.settimeout(5)
    try:
        assert handshake_client_valid(sock, HsCode.HSCPU, HsCode.HSMEMORIA)
        server.stop()
        assert not server.running
        assert sock.recv(1) == b""
    finally:
        sock.close()


def test_start_twice_raises(manager):
    server = MemoryServer(manager, 0)
    server.start()
    try:
        with pytest.raises(RuntimeError):
            server.start()
    finally:
        server.stop()


def test_address_before_start_raises(manager):
    with pytest.raises(RuntimeError):
        MemoryServer(manager, 0).address


def test_main_missing_config_fails(tmp_path):
    assert main(["--config", str(tmp_path / "missing.config")]) == 1


def test_main_unknown_scheme_fails(tmp_path):
    config_file = tmp_path / "memoria.config"
    config_file.write_text(
        "PUERTO_ESCUCHA=0\n"
        "IP_FILESYSTEM=127.0.0.1\n"
        "PUERTO_FILESYSTEM=0\n"
        "TAM_MEMORIA=64\n"
        "PATH_INSTRUCCIONES=.\n"
        "RETARDO_RESPUESTA=0\n"
        "ESQUEMA=PAGINADA\n"
        "ALGORITMO_BUSQUEDA=FIRST\n"
        "LOG_LEVEL=INFO\n",
        encoding="utf-8",
    )
    log_file = tmp_path / "memoria.log"
    status = main(["--config", str(config_file), "--log-file", str(log_file)])
    assert status == 1
    assert log_file.exists()