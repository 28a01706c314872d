"""User memory, its partition table and the table of thread contexts."""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from .config import MemoryConfig
from .protocol import OpCode

__all__ = [
    "Partition",
    "ThreadContext",
    "MemoryManager",
    "first_fit",
    "best_fit",
    "worst_fit",
    "fixed_partitions",
    "dynamic_partitions",
]

logger = logging.getLogger(__name__)

_WORD = struct.Struct("<I")

FIXED = "FIJAS"
DYNAMIC = "DINAMICAS"


@dataclass
class Partition:
    """A contiguous block of user memory; ``end`` is inclusive."""

    start: int
    end: int
    size: int
    occupied: bool = False


@dataclass(eq=False)
class ThreadContext:
    """Execution context of one thread as kept by memory."""

    pid: int
    tid: int
    size: int = 0
    base: int = 0
    limit: int = 0
    ax: int = 0
    bx: int = 0
    cx: int = 0
    dx: int = 0
    ex: int = 0
    fx: int = 0
    gx: int = 0
    hx: int = 0
    pc: int = 0
    instructions: list[str] = field(default_factory=list)


def _free_candidates(partitions: Iterable[Partition], size: int) -> list[Partition]:
    return [p for p in partitions if not p.occupied and p.size >= size]


def first_fit(partitions: Sequence[Partition], size: int) -> Optional[Partition]:
    """Return the first free partition large enough, or None."""
    candidates = _free_candidates(partitions, size)
    if not candidates:
        logger.warning("No se encontró partición adecuada con First Fit")
        return None
    return candidates[0]


def best_fit(partitions: Sequence[Partition], size: int) -> Optional[Partition]:
    """Return the smallest free partition large enough, or None."""
    candidates = _free_candidates(partitions, size)
    if not candidates:
        logger.warning("No se encontró partición adecuada con Best Fit")
        return None
    return min(candidates, key=lambda p: p.size)


def worst_fit(partitions: Sequence[Partition], size: int) -> Optional[Partition]:
    """Return the largest free partition large enough, or None."""
    candidates = _free_candidates(partitions, size)
    if not candidates:
        logger.warning("No se encontró partición adecuada con Worst Fit")
        return None
    return max(candidates, key=lambda p: p.size)


_ALGORITHMS: dict[str, Callable[[Sequence[Partition], int], Optional[Partition]]] = {
    "FIRST": first_fit,
    "BEST": best_fit,
    "WORST": worst_fit,
}


def fixed_partitions(sizes: Iterable[int]) -> list[Partition]:
    """Lay out consecutive partitions of the given sizes from address 0."""
    result: list[Partition] = []
    start = 0
    for size in sizes:
        size = int(size)
        result.append(Partition(start=start, end=start + size - 1, size=size))
        start += size
    return result


def dynamic_partitions(total: int) -> list[Partition]:
    """Return a single free partition spanning the whole memory."""
    return [Partition(start=0, end=total - 1, size=total)]


class MemoryManager:
    """Owns user memory, the partition table and the thread contexts."""

    def __init__(self, config: MemoryConfig) -> None:
        self.config = config
        self.memory = bytearray(config.memory_size)
        self.threads: list[ThreadContext] = []
        self.lock = threading.Lock()
        scheme = config.scheme.upper()
        if scheme == FIXED:
            self.partitions = fixed_partitions(config.partitions)
        elif scheme == DYNAMIC:
            self.partitions = dynamic_partitions(config.memory_size)
        else:
            logger.error("Esquema de memoria desconocido: %s", config.scheme)
            raise ValueError(f"unknown partition scheme: {config.scheme!r}")
        logger.debug("Estructuras de memoria inicializadas correctamente")

    @property
    def is_dynamic(self) -> bool:
        return self.config.scheme.upper() == DYNAMIC

    def check_fit(self, size: int) -> OpCode:
        """Tell whether a process of ``size`` bytes can be placed now."""
        if self.config.memory_size < size:
            return OpCode.MAX_SIZE_ERROR
        if _free_candidates(self.partitions, size):
            return OpCode.SUCCESS
        return OpCode.SIZE_ERROR

    def allocate(self, size: int) -> Optional[Partition]:
        """Occupy a partition for ``size`` bytes; None if none is free.

        Under the dynamic scheme a larger partition is split and the rest
        stays free.
        """
        algorithm = _ALGORITHMS.get(self.config.search_algorithm.upper())
        if algorithm is None:
            logger.error("Algoritmo de asignación desconocido")
            raise ValueError(
                f"unknown search algorithm: {self.config.search_algorithm!r}"
            )
        partition = algorithm(self.partitions, size)
        if partition is None:
            return None
        partition.occupied = True

        if self.is_dynamic and partition.size > size:
            remaining = partition.size - size
            partition.size = size
            if size == 0:
                partition.end = partition.start
                rest = Partition(
                    start=partition.start,
                    end=partition.start + remaining,
                    size=remaining,
                )
            else:
                partition.end = partition.start + size - 1
                rest = Partition(
                    start=partition.end + 1,
                    end=partition.end + remaining,
                    size=remaining,
                )
            self.partitions.append(rest)
            self.partitions.sort(key=lambda p: p.start)

        self._log_table()
        return partition

    def find_process(self, pid: int) -> list[ThreadContext]:
        """Return every thread context of process ``pid``."""
        return [ctx for ctx in self.threads if ctx.pid == pid]

    def find_thread(self, pid: int, tid: int) -> Optional[ThreadContext]:
        """Return the context of thread ``tid`` of process ``pid``, or None."""
        return next(
            (ctx for ctx in self.threads if ctx.pid == pid and ctx.tid == tid), None
        )

    def find_by_partition(self, partition: Partition) -> Optional[ThreadContext]:
        """Return the first context whose bounds match the partition."""
        return next(
            (
                ctx
                for ctx in self.threads
                if ctx.base == partition.start and ctx.limit == partition.end
            ),
            None,
        )

    def add_thread(self, context: ThreadContext) -> None:
        """Register a thread context."""
        self.threads.append(context)

    def release_process(self, context: ThreadContext) -> None:
        """Free the partition held by ``context`` and merge free neighbours."""
        for index, partition in enumerate(self.partitions):
            if not (
                partition.start == context.base
                and partition.end == context.limit
                and partition.occupied
            ):
                continue
            partition.occupied = False
            context.base = 0
            context.limit = 0
            logger.info("Partición liberada para el proceso %d", context.pid)
            if index > 0 and self.is_dynamic:
                self._merge_around(index, partition)
            break
        self._log_table()

    def _merge_around(self, index: int, partition: Partition) -> None:
        self.partitions.sort(key=lambda p: p.start)
        previous = self.partitions[index - 1]
        has_next = len(self.partitions) > index + 1
        following = self.partitions[index + 1] if has_next else None
        if not previous.occupied:
            previous.end = partition.end
            previous.size += partition.size
            if following is not None and not following.occupied:
                previous.end = following.end
                previous.size += following.size
                del self.partitions[index + 1]
            del self.partitions[index]
        elif following is not None and not following.occupied:
            partition.end = following.end
            partition.size += following.size
            del self.partitions[index + 1]

    def release_thread(self, context: ThreadContext) -> None:
        """Forget a thread context."""
        self.threads = [ctx for ctx in self.threads if ctx is not context]

    def _check_address(self, address: int) -> None:
        if address < 0 or address + _WORD.size >= self.config.memory_size:
            raise IndexError(f"physical address out of range: {address}")

    def read_word(self, address: int) -> int:
        """Read the unsigned 32-bit word at a physical address."""
        self._check_address(address)
        with self.lock:
            return _WORD.unpack_from(self.memory, address)[0]

    def write_word(self, address: int, value: int) -> None:
        """Write an unsigned 32-bit word at a physical address."""
        self._check_address(address)
        try:
            data = _WORD.pack(value)
        except struct.error as exc:
            raise ValueError(f"not a 32-bit unsigned integer: {value}") from exc
        with self.lock:
            self.memory[address:address + _WORD.size] = data

    def snapshot(self, start: int, end: int) -> bytes:
        """Return a copy of memory from ``start`` to ``end`` inclusive."""
        if start < 0 or end < start - 1 or end >= len(self.memory):
            raise IndexError(f"range out of memory: {start}..{end}")
        with self.lock:
            return bytes(self.memory[start:end + 1])

    def _log_table(self) -> None:
        logger.info("Estado tabla de particiones:")
        for index, partition in enumerate(self.partitions):
            ctx = self.find_by_partition(partition)
            if ctx is None:
                logger.debug(
                    "Partición %d - Inicio: %d - Fin: %d - Tamaño: %d - Ocupado: %d",
                    index, partition.start, partition.end, partition.size,
                    partition.occupied,
                )
            else:
                logger.debug(
                    "Partición %d - Inicio: %d - Fin: %d - Tamaño: %d - Ocupado: %d"
                    " - PID: %d - TID: %d",
                    index, partition.start, partition.end, partition.size,
                    partition.occupied, ctx.pid, ctx.tid,
                )