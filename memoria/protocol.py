"""Operation, handshake and scheduling codes shared by every module."""

from __future__ import annotations

from enum import IntEnum

__all__ = ["OpCode", "HsCode", "BlockReason", "EvictionReason", "op_code_name"]


class OpCode(IntEnum):
    """Operation code carried in the first byte of every package."""

    SUCCESS = 0
    MENSAJE = 1
    PAQUETE = 2
    EJECUCION_HILO = 3
    INSTRUCCIONES = 4
    PCONTEXTO = 5
    PCONTEXTODESALOJO = 6
    FIN_DE_CLOCK = 7
    INSTRUCCION = 8
    INFO = 9
    CREAR_PROCESO = 10
    FIN_PROCESO = 11
    CREAR_HILO = 12
    FIN_HILO = 13
    MEMORY_DUMP = 14
    OBTENER_CONTEXTO = 15
    ACTUALIZAR_CONTEXTO = 16
    OBTENER_INSTRUCCION = 17
    READ_MEM = 18
    WRITE_MEM = 19
    MAX_SIZE_ERROR = 20
    SIZE_ERROR = 21
    PATH_ERROR = 22
    MOTIVO_DESALOJO = 23
    TID_NOT_FOUND = 24
    PID_NOT_FOUND = 25
    INSTRUCCION_NOT_FOUND = 26


class HsCode(IntEnum):
    """Module identifiers and results exchanged during a handshake."""

    HSKERNEL = 0
    HSCPU = 1
    HSCPUINTERRUPTION = 2
    HSFS = 3
    HSMEMORIA = 4
    HSOK = 5
    HSFAIL = 6


class BlockReason(IntEnum):
    """Why a thread is blocked."""

    THREAD_JOIN = 0
    MUTEX = 1
    IO = 2
    M_DUMP = 3
    NONE = 4


class EvictionReason(IntEnum):
    """Why a thread left the CPU."""

    CONTINUE = 0
    M_DUMP_MEMORY = 1
    M_IO = 2
    M_PROCESS_CREATE = 3
    M_THREAD_CREATE = 4
    M_THREAD_JOIN = 5
    M_THREAD_CANCEL = 6
    M_MUTEX_CREATE = 7
    M_MUTEX_LOCK = 8
    M_MUTEX_UNLOCK = 9
    M_THREAD_EXIT = 10
    M_PROCESS_EXIT = 11
    INTERRUPCION = 12
    SEGFAULT = 13


def op_code_name(code: int) -> str:
    """Return the printable name of an operation code.

    Values that are not a known operation code give ``UNKNOWN(<value>)``.
    """
    try:
        return OpCode(code).name
    except ValueError:
        return f"UNKNOWN({code})"