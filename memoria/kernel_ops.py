"""Requests the kernel sends to memory: processes, threads and dumps."""

from __future__ import annotations

import logging
import socket
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .memory import MemoryManager, ThreadContext
from .packet import Package, decode_int, decode_string
from .protocol import HsCode, OpCode, op_code_name
from .transport import (
    create_connection,
    handshake_client_valid,
    receive_package,
    send_package,
)

__all__ = [
    "load_instructions",
    "create_process",
    "finish_process",
    "create_thread",
    "finish_thread",
    "memory_dump",
    "process_kernel_request",
]

logger = logging.getLogger(__name__)

Connector = Callable[[str, str], socket.socket]


def _reply(code: OpCode) -> Package:
    return Package(code)


def _instruction_from_line(line: str) -> str:
    """Keep the first run of text before any line break or carriage return."""
    content = line.split("\n", 1)[0]
    for segment in content.split("\r"):
        if segment:
            return segment
    return ""


def load_instructions(path: str | Path) -> list[str]:
    """Read a pseudocode file, one instruction per line, line endings removed."""
    with open(path, "r", encoding="utf-8", newline="") as handle:
        return [_instruction_from_line(line) for line in handle]


def _instructions_file(manager: MemoryManager, name: str) -> Path:
    return Path(f"{manager.config.instructions_path}/{name}")


def create_process(manager: MemoryManager, package: Package) -> Package:
    """Place a new process in memory and load its main thread's instructions."""
    items = package.items()
    pid = decode_int(items[0])
    size = decode_int(items[1])
    name = decode_string(items[2])

    logger.info("Creando proceso %d", pid)
    context = ThreadContext(pid=pid, tid=0, size=size)

    result = manager.check_fit(size)
    if result != OpCode.SUCCESS:
        if result == OpCode.MAX_SIZE_ERROR:
            logger.error(
                "El espacio solicitado es mayor al maximo permitido en memoria "
                "para el proceso %d - tid: %d - tamanio: %d",
                pid, context.tid, size,
            )
        else:
            logger.error(
                "No hay espacio suficiente en memoria para el proceso %d - tid: %d",
                pid, context.tid,
            )
        return _reply(result)

    try:
        partition = manager.allocate(size)
    except ValueError:
        partition = None
    if partition is None:
        logger.error(
            "No se pudo asignar particion para el proceso %d - tid: %d",
            pid, context.tid,
        )
        return _reply(OpCode.SIZE_ERROR)

    context.base = partition.start
    context.limit = partition.end

    path = _instructions_file(manager, name)
    logger.debug("Leyendo instrucciones desde: %s", path)
    try:
        context.instructions = load_instructions(path)
    except OSError:
        logger.error("No se pudo leer el archivo %s", path)
        return _reply(OpCode.PATH_ERROR)

    manager.add_thread(context)
    logger.info("## Proceso Creado - PID: %d - Tamaño: %d", pid, size)
    return _reply(OpCode.SUCCESS)


def finish_process(manager: MemoryManager, package: Package) -> Package:
    """Free a process's partition and forget all of its threads."""
    pid = decode_int(package.items()[0])
    threads = manager.find_process(pid)
    if not threads:
        logger.error("Proceso no encontrado")
        return _reply(OpCode.PID_NOT_FOUND)

    size = 0
    for context in threads:
        if context.tid == 0:
            size = context.size
            manager.release_process(context)
        manager.release_thread(context)

    logger.info("## Proceso Destruido - PID: %d - Tamaño: %d", pid, size)
    return _reply(OpCode.SUCCESS)


def create_thread(manager: MemoryManager, package: Package) -> Package:
    """Add a thread sharing its process's partition and load its instructions."""
    items = package.items()
    pid = decode_int(items[0])
    tid = decode_int(items[1])
    name = decode_string(items[2])

    main_thread = manager.find_thread(pid, 0)
    if main_thread is None:
        logger.error("Proceso no encontrado pid: %d", pid)
        return _reply(OpCode.PID_NOT_FOUND)

    logger.info("Creando hilo pid: %d tid: %d", pid, tid)
    context = ThreadContext(
        pid=pid,
        tid=tid,
        size=main_thread.size,
        base=main_thread.base,
        limit=main_thread.limit,
    )

    path = _instructions_file(manager, name)
    logger.debug("Leyendo instrucciones desde: %s", path)
    try:
        context.instructions = load_instructions(path)
    except OSError:
        logger.error("No se pudo leer el archivo %s", path)
        return _reply(OpCode.PATH_ERROR)

    manager.add_thread(context)
    logger.info("## Hilo Creado - (PID:TID) - (%d:%d)", pid, tid)
    return _reply(OpCode.SUCCESS)


def finish_thread(manager: MemoryManager, package: Package) -> Package:
    """Forget one thread of a process."""
    items = package.items()
    pid = decode_int(items[0])
    tid = decode_int(items[1])

    context = manager.find_thread(pid, tid)
    if context is None:
        logger.error("PCB no encontrada")
        return _reply(OpCode.TID_NOT_FOUND)

    manager.release_thread(context)
    logger.info("## Hilo Destruido - (PID:TID) - (%d:%d)", pid, tid)
    return _reply(OpCode.SUCCESS)


def _timestamp() -> str:
    now = datetime.now()
    return f"{now:%H:%M:%S}:{now.microsecond // 1000:03d}"


def memory_dump(
    manager: MemoryManager,
    package: Package,
    connect: Optional[Connector] = None,
) -> Package:
    """Send a process's memory to the filesystem and relay its answer.

    Raises ConnectionError when the filesystem cannot be reached.
    """
    items = package.items()
    pid = decode_int(items[0])
    tid = decode_int(items[1])

    context = manager.find_thread(pid, tid)
    if context is None:
        logger.error("PCB no encontrada pid: %d - tid: %d", pid, tid)
        return _reply(OpCode.PID_NOT_FOUND)

    name = f"{pid}-{tid}-{_timestamp()}.dmp"
    connector = connect or create_connection
    config = manager.config
    try:
        fs_sock = connector(config.filesystem_ip, config.filesystem_port)
    except ConnectionError:
        logger.error("Error conexion con filesystem")
        raise

    with fs_sock:
        handshake_client_valid(fs_sock, HsCode.HSMEMORIA, HsCode.HSFS)

        dump = manager.snapshot(context.base, context.limit)
        request = Package(OpCode.MEMORY_DUMP)
        request.add_uint32(len(dump))
        request.add_string(name)
        request.add(dump)
        send_package(fs_sock, request)

        logger.info("## Memory Dump solicitado - (PID:TID) - (%d:%d)", pid, tid)
        result = receive_package(fs_sock)

    if result.op_code != OpCode.SUCCESS:
        logger.error(
            "Error al escribir en filesystem %s", op_code_name(result.op_code)
        )
    else:
        logger.debug("Se escribio bien en filesystem")
    return Package(result.op_code)


_HANDLERS: dict[int, Callable[[MemoryManager, Package], Package]] = {
    OpCode.CREAR_PROCESO: create_process,
    OpCode.FIN_PROCESO: finish_process,
    OpCode.CREAR_HILO: create_thread,
    OpCode.FIN_HILO: finish_thread,
    OpCode.MEMORY_DUMP: memory_dump,
}


def process_kernel_request(sock: socket.socket, manager: MemoryManager) -> None:
    """Serve one request from the kernel and send back the answer.

    Unknown operations get no answer; neither does a dump whose
    filesystem could not be reached.
    """
    logger.debug("Esperando mensaje de kernel")
    package = receive_package(sock)
    logger.info(
        "MEMORIA - KERNEL: Codigo de operacion recibido: %s",
        op_code_name(package.op_code),
    )
    handler = _HANDLERS.get(package.op_code)
    if handler is None:
        return
    try:
        response = handler(manager, package)
    except ConnectionError:
        return
    send_package(sock, response)