"""Requests the CPU sends to memory: contexts, instructions and memory words."""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable

from .memory import MemoryManager
from .packet import Package, decode_int, decode_uint32
from .protocol import EvictionReason, OpCode, op_code_name
from .transport import receive_package, send_package

__all__ = [
    "get_context",
    "update_context",
    "get_instruction",
    "read_memory",
    "write_memory",
    "process_cpu_requests",
]

logger = logging.getLogger(__name__)

_WORD_SIZE = 4


def _ids(items: list[bytes]) -> tuple[int, int]:
    return decode_int(items[0]), decode_int(items[1])


def get_context(manager: MemoryManager, package: Package) -> Package:
    """Answer with the bounds, registers and program counter of a thread."""
    pid, tid = _ids(package.items())
    context = manager.find_thread(pid, tid)
    if context is None:
        logger.error("PCB no encontrada")
        return Package(OpCode.PID_NOT_FOUND)

    reply = Package(OpCode.PCONTEXTO)
    for value in (
        context.base,
        context.limit,
        context.ax,
        context.bx,
        context.cx,
        context.dx,
        context.ex,
        context.fx,
        context.gx,
        context.hx,
        context.pc,
    ):
        reply.add_uint32(value)

    logger.debug(
        "Contexto del PID %d, TID %d enviado: PC %d, AX %d, BX %d, CX %d, DX %d,"
        " EX %d, FX %d, GX %d, HX %d, base %d, limite %d",
        pid, tid, context.pc, context.ax, context.bx, context.cx, context.dx,
        context.ex, context.fx, context.gx, context.hx, context.base, context.limit,
    )
    logger.info("## Contexto Solicitados - (PID:TID) - (%d:%d)", pid, tid)
    return reply


def update_context(manager: MemoryManager, package: Package) -> Package:
    """Store the program counter, registers and bounds sent by the CPU."""
    items = package.items()
    pid, tid = _ids(items)
    pc, ax, bx, cx, dx, ex, fx, gx, hx, base, limit = (
        decode_uint32(item) for item in items[2:13]
    )

    context = manager.find_thread(pid, tid)
    if context is None:
        logger.error("PCB no encontrada")
        return Package(OpCode.PID_NOT_FOUND)

    context.pc = pc
    context.ax = ax
    context.bx = bx
    context.cx = cx
    context.dx = dx
    context.ex = ex
    context.fx = fx
    context.gx = gx
    context.hx = hx
    context.base = base
    context.limit = limit

    logger.info("## Contexto Actualizado - (PID:TID) - (%d:%d)", pid, tid)
    return Package(OpCode.SUCCESS)


def get_instruction(manager: MemoryManager, package: Package) -> Package:
    """Answer with the instruction at a thread's program counter."""
    items = package.items()
    pid, tid = _ids(items)
    pc = decode_int(items[2])

    context = manager.find_thread(pid, tid)
    if context is None:
        logger.error("PCB no encontrada pid: %d - tid: %d", pid, tid)
        return Package(OpCode.PID_NOT_FOUND)

    if not 0 <= pc < len(context.instructions):
        logger.error(
            "No existe la instruccion a la que se desea acceder"
            " pid: %d - tid: %d - pc: %d",
            pid, tid, pc,
        )
        return Package(OpCode.INSTRUCCION_NOT_FOUND)

    instruction = context.instructions[pc].split("\n", 1)[0]
    logger.info(
        "## Obtener instrucción - (PID:TID) - (%d:%d) - Instrucción: %s",
        pid, tid, instruction,
    )
    return Package(OpCode.INSTRUCCION).add_string(instruction)


def read_memory(manager: MemoryManager, package: Package) -> Package:
    """Answer with the 32-bit word at a physical address."""
    items = package.items()
    pid, tid = _ids(items)
    address = decode_int(items[2])

    try:
        value = manager.read_word(address)
    except IndexError:
        logger.error(
            "Dirección física fuera de rango pid: %d - tid: %d - df: %d",
            pid, tid, address,
        )
        return Package(EvictionReason.SEGFAULT)

    logger.info("Valor leído desde la dirección %d: %d", address, value)
    logger.info(
        "## Lectura - (PID:TID) -(%d:%d) - Dir. Física: %d - Tamaño: %d",
        pid, tid, address, _WORD_SIZE,
    )
    return Package(OpCode.INFO).add_uint32(value)


def write_memory(manager: MemoryManager, package: Package) -> Package:
    """Store a 32-bit word at a physical address."""
    items = package.items()
    pid, tid = _ids(items)
    address = decode_int(items[2])
    value = decode_uint32(items[3])

    try:
        manager.write_word(address, value)
    except IndexError:
        logger.error("Dirección física fuera de rango")
        return Package(EvictionReason.SEGFAULT)

    logger.info("Valor escrito en la dirección %d: %d", address, value)
    logger.info(
        "## Escritura - (PID:TID) -(%d:%d) - Dir. Física: %d - Tamaño: %d",
        pid, tid, address, _WORD_SIZE,
    )
    return Package(OpCode.SUCCESS)


_HANDLERS: dict[int, Callable[[MemoryManager, Package], Package]] = {
    OpCode.OBTENER_CONTEXTO: get_context,
    OpCode.ACTUALIZAR_CONTEXTO: update_context,
    OpCode.OBTENER_INSTRUCCION: get_instruction,
    OpCode.READ_MEM: read_memory,
    OpCode.WRITE_MEM: write_memory,
}


def process_cpu_requests(sock: socket.socket, manager: MemoryManager) -> None:
    """Serve the CPU until it sends an unknown operation or disconnects.

    Every answer is delayed by the configured response delay in milliseconds.
    """
    while True:
        logger.debug("Esperando mensaje de CPU")
        try:
            package = receive_package(sock)
        except ConnectionError:
            logger.info("La CPU cerro la conexion")
            return
        logger.info(
            "Codigo de operacion recibido: %s", op_code_name(package.op_code)
        )
        delay = manager.config.response_delay
        if delay > 0:
            time.sleep(delay / 1000)
        handler = _HANDLERS.get(package.op_code)
        if handler is None:
            return
        send_package(sock, handler(manager, package))